"""Report routing, calibration and fused pose output."""
