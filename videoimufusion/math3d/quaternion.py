"""Quaternion utilities for right-handed coordinates.

Quaternions are numpy arrays ordered [w, x, y, z].
"""

from __future__ import annotations

import math

import numpy as np


def q_identity() -> np.ndarray:
    return np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)


def q_normalize(q: np.ndarray) -> np.ndarray:
    q = np.asarray(q, dtype=np.float64)
    n = float(np.linalg.norm(q))
    if n < 1e-12:
        return q_identity()
    return q / n


def q_conj(q: np.ndarray) -> np.ndarray:
    return np.array([q[0], -q[1], -q[2], -q[3]], dtype=np.float64)


def q_mul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array(
        [
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        ],
        dtype=np.float64,
    )


def q_rotate_vec(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate vector v by unit quaternion q: v' = q*(0,v)*q^{-1}."""
    q = q_normalize(q)
    vq = np.array([0.0, float(v[0]), float(v[1]), float(v[2])], dtype=np.float64)
    return q_mul(q_mul(q, vq), q_conj(q))[1:]


def q_canonical(q: np.ndarray) -> np.ndarray:
    """Pick the representative of +/-q with non-negative w."""
    q = np.asarray(q, dtype=np.float64)
    return -q if q[0] < 0.0 else q


def axis_angle_to_q(axis: np.ndarray, angle_rad: float) -> np.ndarray:
    axis = np.asarray(axis, dtype=np.float64)
    axis = axis / (np.linalg.norm(axis) + 1e-12)
    s = math.sin(angle_rad / 2.0)
    return q_normalize(
        np.array(
            [math.cos(angle_rad / 2.0), axis[0] * s, axis[1] * s, axis[2] * s],
            dtype=np.float64,
        )
    )


def rotvec_to_q(rotvec: np.ndarray) -> np.ndarray:
    """Exponential map: rotation vector (axis * angle, rad) -> unit quaternion.

    Equivalent to exp(rotvec / 2) for a pure quaternion argument.
    """
    r = np.asarray(rotvec, dtype=np.float64).reshape(3)
    angle = float(np.linalg.norm(r))
    if angle < 1e-12:
        # First-order expansion near zero.
        return q_normalize(np.array([1.0, 0.5 * r[0], 0.5 * r[1], 0.5 * r[2]]))
    s = math.sin(angle / 2.0) / angle
    return np.array(
        [math.cos(angle / 2.0), r[0] * s, r[1] * s, r[2] * s], dtype=np.float64
    )


def q_to_rotvec(q: np.ndarray) -> np.ndarray:
    """Logarithm map along the shortest arc: unit quaternion -> rotation vector."""
    q = q_canonical(q_normalize(q))
    v = q[1:]
    s = float(np.linalg.norm(v))
    if s < 1e-12:
        return 2.0 * v
    angle = 2.0 * math.atan2(s, float(q[0]))
    return v * (angle / s)


def q_small_angle_error(q_err: np.ndarray) -> np.ndarray:
    """Linearized rotation vector 2*vec(q) of an error quaternion."""
    return 2.0 * q_canonical(q_err)[1:]


def q_slerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    """Spherical linear interpolation from a (t=0) to b (t=1), shortest path."""
    a = q_normalize(a)
    b = q_normalize(b)
    dot = float(np.dot(a, b))
    if dot < 0.0:
        b = -b
        dot = -dot
    dot = min(1.0, dot)
    if dot > 0.9995:
        return q_normalize(a + t * (b - a))
    theta = math.acos(dot)
    sin_theta = math.sin(theta)
    s0 = math.sin((1.0 - t) * theta) / sin_theta
    s1 = math.sin(t * theta) / sin_theta
    return q_normalize(s0 * a + s1 * b)


def q_angle_between(a: np.ndarray, b: np.ndarray) -> float:
    """Rotation angle (rad) separating two orientations."""
    d = abs(float(np.dot(q_normalize(a), q_normalize(b))))
    return 2.0 * math.acos(min(1.0, d))
