"""Pose filter state with externalized rotation.

The linear state vector holds a small-angle orientation increment instead of
the orientation itself; the orientation lives beside it as a reference
quaternion. The combined orientation is

    q = normalize(exp(delta / 2) * q_ref)

and after every correction the increment is folded into ``q_ref`` and zeroed
(``externalize_rotation``). Position, velocity and angular velocity are all
expressed in the room frame.

Layout of the 12-element vector (shared by the process and measurement
models):

    [0:3]   position
    [3:6]   velocity
    [6:9]   incremental orientation (rotation vector, rad)
    [9:12]  angular velocity (rad/s)
"""

from __future__ import annotations

import numpy as np

from ..math3d.quaternion import q_identity, q_mul, q_normalize, rotvec_to_q

STATE_DIM = 12

POSITION = slice(0, 3)
VELOCITY = slice(3, 6)
INCREMENTAL_ORIENTATION = slice(6, 9)
ANGULAR_VELOCITY = slice(9, 12)


def symmetrize(P: np.ndarray) -> np.ndarray:
    return 0.5 * (P + P.T)


class PoseState:
    def __init__(
        self,
        state_vector: np.ndarray | None = None,
        quaternion: np.ndarray | None = None,
        error_covariance: np.ndarray | None = None,
    ):
        self._x = np.zeros(STATE_DIM, dtype=np.float64)
        self._q = q_identity()
        self._P = np.eye(STATE_DIM, dtype=np.float64)
        if state_vector is not None:
            self.set_state_vector(state_vector)
        if quaternion is not None:
            self.set_quaternion(quaternion)
        if error_covariance is not None:
            self.set_error_covariance(error_covariance)

    def set_state_vector(self, v: np.ndarray) -> None:
        v = np.asarray(v, dtype=np.float64).reshape(-1)
        if v.size != STATE_DIM:
            raise ValueError(f"state vector must have {STATE_DIM} entries, got {v.size}")
        if not np.isfinite(v).all():
            raise ValueError("state vector must be finite")
        self._x = v.copy()

    def state_vector(self) -> np.ndarray:
        return self._x.copy()

    def set_quaternion(self, q: np.ndarray) -> None:
        self._q = q_normalize(np.asarray(q, dtype=np.float64).reshape(4))

    def get_quaternion(self) -> np.ndarray:
        """Reference orientation (excludes any pending increment)."""
        return self._q.copy()

    def get_combined_quaternion(self) -> np.ndarray:
        """Reference orientation with the pending increment applied."""
        return q_normalize(q_mul(rotvec_to_q(self._x[INCREMENTAL_ORIENTATION]), self._q))

    def get_position(self) -> np.ndarray:
        return self._x[POSITION].copy()

    def get_velocity(self) -> np.ndarray:
        return self._x[VELOCITY].copy()

    def get_incremental_orientation(self) -> np.ndarray:
        return self._x[INCREMENTAL_ORIENTATION].copy()

    def get_angular_velocity(self) -> np.ndarray:
        return self._x[ANGULAR_VELOCITY].copy()

    def set_error_covariance(self, P: np.ndarray) -> None:
        P = np.asarray(P, dtype=np.float64)
        if P.shape != (STATE_DIM, STATE_DIM):
            raise ValueError(
                f"error covariance must be {STATE_DIM}x{STATE_DIM}, got {P.shape}"
            )
        if not np.isfinite(P).all():
            raise ValueError("error covariance must be finite")
        self._P = symmetrize(P)

    def error_covariance(self) -> np.ndarray:
        return self._P.copy()

    def externalize_rotation(self) -> None:
        """Fold the orientation increment into the reference quaternion."""
        self._q = self.get_combined_quaternion()
        self._x[INCREMENTAL_ORIENTATION] = 0.0

    def copy(self) -> "PoseState":
        return PoseState(self._x, self._q, self._P)
