"""Error-state Kalman filtering for rigid-body pose."""

from .filter import FlexibleKalmanFilter, KalmanCorrectionError
from .measurements import (
    AbsoluteOrientationMeasurement,
    AbsolutePoseMeasurement,
    Measurement,
    MeasurementCovarianceError,
    diagonal_covariance,
)
from .process_model import PoseDampedConstantVelocityProcessModel
from .state import PoseState

__all__ = [
    "AbsoluteOrientationMeasurement",
    "AbsolutePoseMeasurement",
    "FlexibleKalmanFilter",
    "KalmanCorrectionError",
    "Measurement",
    "MeasurementCovarianceError",
    "PoseDampedConstantVelocityProcessModel",
    "PoseState",
    "diagonal_covariance",
]
