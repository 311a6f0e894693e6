"""Pose data structures and rigid-transform helpers for 6DoF tracking."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..math3d.quaternion import q_conj, q_mul, q_normalize, q_rotate_vec


@dataclass(slots=True)
class Pose6D:
    """Rigid transform / pose.

    position:
      3D translation [x, y, z], meters.
    quaternion:
      Orientation quaternion [w, x, y, z], unit length.

    Read as a transform it maps a point p in the child frame to
    ``quaternion * p + position`` in the parent frame.
    """

    position: np.ndarray
    quaternion: np.ndarray


def identity_pose() -> Pose6D:
    return Pose6D(
        position=np.zeros(3, dtype=np.float64),
        quaternion=np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64),
    )


def make_pose(position, quaternion) -> Pose6D:
    return Pose6D(
        position=np.asarray(position, dtype=np.float64).reshape(3).copy(),
        quaternion=q_normalize(np.asarray(quaternion, dtype=np.float64).reshape(4)),
    )


def pose_from_rotation(quaternion: np.ndarray) -> Pose6D:
    """Pure rotation transform."""
    return make_pose(np.zeros(3, dtype=np.float64), quaternion)


def compose(a: Pose6D, b: Pose6D) -> Pose6D:
    """Transform composition a * b (apply b first, then a)."""
    return Pose6D(
        position=q_rotate_vec(a.quaternion, b.position) + a.position,
        quaternion=q_normalize(q_mul(a.quaternion, b.quaternion)),
    )


def inverse(t: Pose6D) -> Pose6D:
    q_inv = q_conj(q_normalize(t.quaternion))
    return Pose6D(
        position=-q_rotate_vec(q_inv, t.position),
        quaternion=q_inv,
    )


def transform_point(t: Pose6D, p: np.ndarray) -> np.ndarray:
    return q_rotate_vec(t.quaternion, np.asarray(p, dtype=np.float64)) + t.position
