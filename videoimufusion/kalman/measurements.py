"""Measurement models for the pose filter.

Each measurement carries its own noise covariance R so confidence can vary
per report or per sensor. Orientation residuals use the linearized rotation
error ``2 * vec(q_obs * q_hat^-1)``, which matches the left-multiplied
orientation increment of :class:`~videoimufusion.kalman.state.PoseState`.
"""

from __future__ import annotations

import numpy as np

from ..math3d.quaternion import q_conj, q_mul, q_normalize, q_small_angle_error
from .state import INCREMENTAL_ORIENTATION, POSITION, STATE_DIM, PoseState

# Largest condition number accepted for a measurement covariance.
MAX_COVARIANCE_CONDITION = 1e12


class MeasurementCovarianceError(ValueError):
    """Measurement noise covariance is not symmetric positive-definite."""


def diagonal_covariance(values) -> np.ndarray:
    return np.diag(np.asarray(values, dtype=np.float64).reshape(-1))


def validate_covariance(R, dim: int) -> np.ndarray:
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (dim, dim):
        raise MeasurementCovarianceError(
            f"measurement covariance must be {dim}x{dim}, got {R.shape}"
        )
    if not np.isfinite(R).all():
        raise MeasurementCovarianceError("measurement covariance must be finite")
    if not np.allclose(R, R.T, rtol=1e-9, atol=1e-12):
        raise MeasurementCovarianceError("measurement covariance must be symmetric")
    eig = np.linalg.eigvalsh(R)
    if float(eig[0]) <= 0.0:
        raise MeasurementCovarianceError(
            f"measurement covariance must be positive-definite (min eigenvalue {eig[0]:.3g})"
        )
    if float(eig[-1] / eig[0]) > MAX_COVARIANCE_CONDITION:
        raise MeasurementCovarianceError(
            "measurement covariance is near-singular "
            f"(condition number {eig[-1] / eig[0]:.3g})"
        )
    return 0.5 * (R + R.T)


def orientation_residual(q_observed: np.ndarray, q_predicted: np.ndarray) -> np.ndarray:
    return q_small_angle_error(q_mul(q_observed, q_conj(q_predicted)))


class Measurement:
    """Base interface for filter measurements."""

    dimension: int = 0

    def __init__(self, covariance):
        self.covariance = validate_covariance(covariance, self.dimension)

    def predict_measurement(self, state: PoseState):
        raise NotImplementedError

    def residual(self, state: PoseState) -> np.ndarray:
        """Innovation z - h(x) as a dimension-sized vector."""
        raise NotImplementedError

    def jacobian(self, state: PoseState) -> np.ndarray:
        raise NotImplementedError


class AbsoluteOrientationMeasurement(Measurement):
    """Room-frame orientation, e.g. from an IMU."""

    dimension = 3

    def __init__(self, quaternion, covariance):
        super().__init__(covariance)
        self.quaternion = q_normalize(np.asarray(quaternion, dtype=np.float64).reshape(4))

    def predict_measurement(self, state: PoseState) -> np.ndarray:
        return state.get_combined_quaternion()

    def residual(self, state: PoseState) -> np.ndarray:
        return orientation_residual(self.quaternion, self.predict_measurement(state))

    def jacobian(self, state: PoseState) -> np.ndarray:  # noqa: ARG002
        H = np.zeros((3, STATE_DIM), dtype=np.float64)
        H[:, INCREMENTAL_ORIENTATION] = np.eye(3, dtype=np.float64)
        return H


class AbsolutePoseMeasurement(Measurement):
    """Room-frame position + orientation, e.g. a video tracker pose."""

    dimension = 6

    def __init__(self, position, quaternion, covariance):
        super().__init__(covariance)
        self.position = np.asarray(position, dtype=np.float64).reshape(3).copy()
        self.quaternion = q_normalize(np.asarray(quaternion, dtype=np.float64).reshape(4))

    def predict_measurement(self, state: PoseState) -> tuple[np.ndarray, np.ndarray]:
        return state.get_position(), state.get_combined_quaternion()

    def residual(self, state: PoseState) -> np.ndarray:
        p_hat, q_hat = self.predict_measurement(state)
        return np.concatenate(
            [self.position - p_hat, orientation_residual(self.quaternion, q_hat)]
        )

    def jacobian(self, state: PoseState) -> np.ndarray:  # noqa: ARG002
        H = np.zeros((6, STATE_DIM), dtype=np.float64)
        H[0:3, POSITION] = np.eye(3, dtype=np.float64)
        H[3:6, INCREMENTAL_ORIENTATION] = np.eye(3, dtype=np.float64)
        return H
