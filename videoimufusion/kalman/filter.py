"""Extended Kalman filter generic over measurement type."""

from __future__ import annotations

import logging

import numpy as np

from .measurements import Measurement
from .process_model import PoseDampedConstantVelocityProcessModel
from .state import STATE_DIM, PoseState, symmetrize

logger = logging.getLogger(__name__)

# Innovation covariances worse-conditioned than this are treated as singular.
MAX_INNOVATION_CONDITION = 1e12


class KalmanCorrectionError(RuntimeError):
    """A correction could not be applied; the filter state is unchanged."""


class FlexibleKalmanFilter:
    """EKF owning one state and one process model.

    Any object following the :class:`Measurement` contract (residual,
    jacobian, covariance) can be passed to :meth:`correct`.
    """

    def __init__(
        self,
        state: PoseState | None = None,
        process_model: PoseDampedConstantVelocityProcessModel | None = None,
    ):
        self._state = state if state is not None else PoseState()
        self._process_model = (
            process_model
            if process_model is not None
            else PoseDampedConstantVelocityProcessModel()
        )

    @property
    def state(self) -> PoseState:
        return self._state

    @property
    def process_model(self) -> PoseDampedConstantVelocityProcessModel:
        return self._process_model

    def predict(self, dt: float) -> None:
        """Time update by dt seconds. Raises ValueError for dt <= 0."""
        x_pred, F, Q = self._process_model.predict_state(self._state, dt)
        P = self._state.error_covariance()
        self._state.set_state_vector(x_pred)
        self._state.set_error_covariance(F @ P @ F.T + Q)

    def correct(self, measurement: Measurement) -> bool:
        """Measurement update (Joseph form), then re-externalize the rotation."""
        x = self._state.state_vector()
        P = self._state.error_covariance()
        H = measurement.jacobian(self._state)
        R = measurement.covariance
        y = measurement.residual(self._state)

        S = symmetrize(H @ P @ H.T + R)
        if not np.isfinite(S).all() or not np.isfinite(y).all():
            raise KalmanCorrectionError("non-finite innovation")
        cond = np.linalg.cond(S)
        if not np.isfinite(cond) or cond > MAX_INNOVATION_CONDITION:
            raise KalmanCorrectionError(
                f"innovation covariance is singular (condition number {cond:.3g})"
            )
        try:
            # K = P H^T S^-1, solved as S K^T = H P (S and P symmetric).
            K = np.linalg.solve(S, H @ P).T
        except np.linalg.LinAlgError as exc:
            raise KalmanCorrectionError(f"innovation covariance is singular: {exc}") from exc

        I_KH = np.eye(STATE_DIM, dtype=np.float64) - K @ H
        P_new = I_KH @ P @ I_KH.T + K @ R @ K.T
        x_new = x + K @ y
        if not np.isfinite(x_new).all() or not np.isfinite(P_new).all():
            raise KalmanCorrectionError("correction produced non-finite values")

        self._state.set_state_vector(x_new)
        self._state.set_error_covariance(P_new)
        self._state.externalize_rotation()
        logger.debug(
            "[EKF] corrected with %s, |innovation|=%.4g",
            type(measurement).__name__,
            float(np.linalg.norm(y)),
        )
        return True
