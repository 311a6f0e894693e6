"""Adaptive low-pass ("One Euro") filters for vectors and orientations.

The cutoff frequency follows the smoothed rate of change of the signal:

    cutoff = min_cutoff + beta * |dx/dt|

so slow, noisy signals are smoothed hard while fast motion passes with
little lag. Each call takes the elapsed time since the previous sample.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..math3d.quaternion import q_conj, q_mul, q_normalize, q_slerp, q_to_rotvec


@dataclass(frozen=True)
class OneEuroParams:
    min_cutoff: float = 1.0
    beta: float = 0.5
    derivative_cutoff: float = 1.0


def smoothing_alpha(dt: float, cutoff: float) -> float:
    """Exponential smoothing factor for a first-order low-pass at ``cutoff`` Hz."""
    tau = 1.0 / (2.0 * math.pi * cutoff)
    return 1.0 / (1.0 + tau / dt)


def _sanitize_dt(dt: float) -> float:
    dt = float(dt)
    if not math.isfinite(dt) or dt <= 0.0:
        return 1.0
    return dt


class OneEuroFilter:
    """One Euro filter over fixed-size float vectors."""

    def __init__(self, params: OneEuroParams | None = None):
        self.params = params or OneEuroParams()
        self._x_hat: Optional[np.ndarray] = None
        self._dx_hat: Optional[np.ndarray] = None

    @property
    def state(self) -> Optional[np.ndarray]:
        return None if self._x_hat is None else self._x_hat.copy()

    def reset(self) -> None:
        self._x_hat = None
        self._dx_hat = None

    def filter(self, dt: float, sample) -> np.ndarray:
        x = np.asarray(sample, dtype=np.float64).reshape(-1)
        if self._x_hat is None:
            self._x_hat = x.copy()
            self._dx_hat = np.zeros_like(x)
            return self._x_hat.copy()

        dt = _sanitize_dt(dt)
        dx = (x - self._x_hat) / dt
        a_d = smoothing_alpha(dt, self.params.derivative_cutoff)
        self._dx_hat = (1.0 - a_d) * self._dx_hat + a_d * dx

        cutoff = self.params.min_cutoff + self.params.beta * float(
            np.linalg.norm(self._dx_hat)
        )
        a = smoothing_alpha(dt, cutoff)
        self._x_hat = (1.0 - a) * self._x_hat + a * x
        return self._x_hat.copy()


class QuaternionOneEuroFilter:
    """One Euro filter over unit quaternions [w, x, y, z].

    The derivative is the angular velocity (rad/s) taking the last estimate to
    the new sample; smoothing is a SLERP toward the sample.
    """

    def __init__(self, params: OneEuroParams | None = None):
        self.params = params or OneEuroParams()
        self._q_hat: Optional[np.ndarray] = None
        self._dq_hat: Optional[np.ndarray] = None

    @property
    def state(self) -> Optional[np.ndarray]:
        return None if self._q_hat is None else self._q_hat.copy()

    def reset(self) -> None:
        self._q_hat = None
        self._dq_hat = None

    def filter(self, dt: float, sample) -> np.ndarray:
        q = q_normalize(np.asarray(sample, dtype=np.float64).reshape(4))
        if self._q_hat is None:
            self._q_hat = q.copy()
            self._dq_hat = np.zeros(3, dtype=np.float64)
            return self._q_hat.copy()

        dt = _sanitize_dt(dt)
        omega = q_to_rotvec(q_mul(q, q_conj(self._q_hat))) / dt
        a_d = smoothing_alpha(dt, self.params.derivative_cutoff)
        self._dq_hat = (1.0 - a_d) * self._dq_hat + a_d * omega

        cutoff = self.params.min_cutoff + self.params.beta * float(
            np.linalg.norm(self._dq_hat)
        )
        a = smoothing_alpha(dt, cutoff)
        self._q_hat = q_slerp(self._q_hat, q, a)
        return self._q_hat.copy()
