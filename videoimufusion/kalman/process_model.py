"""Damped constant-velocity process model for the pose state."""

from __future__ import annotations

import logging

import numpy as np

from .state import (
    ANGULAR_VELOCITY,
    INCREMENTAL_ORIENTATION,
    POSITION,
    STATE_DIM,
    VELOCITY,
    PoseState,
)

logger = logging.getLogger(__name__)

DEFAULT_DAMPING = 0.1
DEFAULT_NOISE_AUTOCORRELATION = (0.01, 0.01, 0.01, 0.01, 0.01, 0.01)


class PoseDampedConstantVelocityProcessModel:
    """Constant velocity kinematics with velocity decay.

    damping:
      Fraction of (angular) velocity that survives one second, in (0, 1).
      Over an interval dt the velocities are scaled by ``damping ** dt``.
    noise_autocorrelation:
      Six white-noise acceleration densities: x, y, z translation followed by
      x, y, z rotation. Process noise is linear in these values.
    """

    def __init__(
        self,
        damping: float = DEFAULT_DAMPING,
        noise_autocorrelation=DEFAULT_NOISE_AUTOCORRELATION,
    ):
        damping = float(damping)
        if not (0.0 < damping < 1.0):
            raise ValueError(f"damping must be in (0,1), got {damping}")
        mu = np.asarray(noise_autocorrelation, dtype=np.float64).reshape(-1)
        if mu.size != 6:
            raise ValueError(f"noise autocorrelation needs 6 entries, got {mu.size}")
        if (mu < 0.0).any() or not np.isfinite(mu).all():
            raise ValueError("noise autocorrelation must be finite and >= 0")
        self.damping = damping
        self.noise_autocorrelation = mu

    def scale_noise(self, factor: float) -> None:
        factor = float(factor)
        if factor <= 0.0:
            raise ValueError(f"noise scale factor must be > 0, got {factor}")
        self.noise_autocorrelation = self.noise_autocorrelation * factor
        logger.debug(
            "[PROCESS] noise autocorrelation scaled by %.3f -> %s",
            factor,
            np.array2string(self.noise_autocorrelation, precision=4),
        )

    def velocity_decay(self, dt: float) -> float:
        return float(self.damping ** dt)

    def state_transition(self, dt: float) -> np.ndarray:
        """Jacobian F of the (linear) transition over dt."""
        d = self.velocity_decay(dt)
        F = np.eye(STATE_DIM, dtype=np.float64)
        I3 = np.eye(3, dtype=np.float64)
        F[POSITION, VELOCITY] = dt * I3
        F[INCREMENTAL_ORIENTATION, ANGULAR_VELOCITY] = dt * I3
        F[VELOCITY, VELOCITY] = d * I3
        F[ANGULAR_VELOCITY, ANGULAR_VELOCITY] = d * I3
        return F

    def process_noise(self, dt: float) -> np.ndarray:
        """Discretized white-noise-acceleration covariance Q(dt)."""
        Q = np.zeros((STATE_DIM, STATE_DIM), dtype=np.float64)
        dt2 = dt * dt
        dt3 = dt2 * dt
        for axis in range(3):
            for mu, value_idx, rate_idx in (
                (self.noise_autocorrelation[axis], POSITION.start, VELOCITY.start),
                (
                    self.noise_autocorrelation[3 + axis],
                    INCREMENTAL_ORIENTATION.start,
                    ANGULAR_VELOCITY.start,
                ),
            ):
                i = value_idx + axis
                j = rate_idx + axis
                Q[i, i] = mu * dt3 / 3.0
                Q[i, j] = Q[j, i] = mu * dt2 / 2.0
                Q[j, j] = mu * dt
        return Q

    def predict_state(
        self, state: PoseState, dt: float
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return (predicted state vector, F, Q) for an elapsed time dt > 0."""
        dt = float(dt)
        if not np.isfinite(dt) or dt <= 0.0:
            raise ValueError(f"prediction interval must be > 0, got {dt}")
        F = self.state_transition(dt)
        x_pred = F @ state.state_vector()
        return x_pred, F, self.process_noise(dt)
