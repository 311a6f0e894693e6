"""Quaternion math helpers."""
