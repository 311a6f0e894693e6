"""Control plane for fusing IMU orientation with video-tracker poses.

Lifecycle:

  ACQUIRING_CAMERA_POSE
    Each video pose report is paired with the latest IMU orientation to get a
    camera-to-room candidate; candidates are smoothed until enough samples
    have been seen.
  RUNNING
    Camera-to-room is fixed. Every report drives predict + correct on the
    Kalman filter and the fused pose is pushed to the pose sink.

There is no way back from RUNNING.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import numpy as np

from ..filters.one_euro import OneEuroFilter, OneEuroParams, QuaternionOneEuroFilter
from ..kalman.filter import FlexibleKalmanFilter, KalmanCorrectionError
from ..kalman.measurements import (
    AbsoluteOrientationMeasurement,
    AbsolutePoseMeasurement,
    diagonal_covariance,
    validate_covariance,
)
from ..kalman.process_model import (
    DEFAULT_DAMPING,
    DEFAULT_NOISE_AUTOCORRELATION,
    PoseDampedConstantVelocityProcessModel,
)
from ..kalman.state import POSITION, STATE_DIM, PoseState
from ..math3d.quaternion import q_angle_between
from .pose import Pose6D, compose, inverse, make_pose, pose_from_rotation
from .pose_sink import (
    FUSED_SENSOR,
    TRANSFORMED_VIDEO_SENSOR,
    FusedPoseSample,
    PoseSink,
)
from .reports import OrientationReport, PoseReport, TimeValue, seconds_elapsed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FusionParams:
    """Tuning for calibration and fusion.

    Error values are variances on the diagonal of the matching covariance.

    required_samples:
      Camera pose samples averaged before fusion starts.
    initial_state_error:
      Initial error covariance diagonal, one entry per state element.
    imu_error:
      IMU orientation variance (rad^2) about x, y, z.
    camera_position_error / camera_orientation_error:
      Video tracker position (m^2) and orientation (rad^2) variances.
    process_noise_scale:
      Applied once to the process noise autocorrelation when the filter is
      seeded.
    damping / noise_autocorrelation:
      Process model parameters, see PoseDampedConstantVelocityProcessModel.
    one_euro:
      Smoothing of the camera-to-room candidates during acquisition.
    calibration_timeout_s:
      Restart acquisition when it has not finished this long after its first
      accepted sample (report time). 0 disables.
    calibration_max_angular_speed:
      Reject acquisition samples while the IMU reports rotation faster than
      this (rad/s). 0 disables.
    """

    required_samples: int = 10
    initial_state_error: tuple[float, ...] = (1.0,) * STATE_DIM
    imu_error: tuple[float, float, float] = (1.0, 1.5, 1.0)
    camera_position_error: tuple[float, float, float] = (1.0, 1.0, 1.0)
    camera_orientation_error: tuple[float, float, float] = (1.1, 1.1, 1.1)
    process_noise_scale: float = 0.5
    damping: float = DEFAULT_DAMPING
    noise_autocorrelation: tuple[float, ...] = DEFAULT_NOISE_AUTOCORRELATION
    one_euro: OneEuroParams = field(default_factory=OneEuroParams)
    calibration_timeout_s: float = 0.0
    calibration_max_angular_speed: float = 0.0


class FusionPhase(enum.Enum):
    ACQUIRING_CAMERA_POSE = "acquiring-camera-pose"
    RUNNING = "running"


def _elapsed_or_one(earlier: Optional[TimeValue], later: TimeValue) -> float:
    if earlier is None:
        return 1.0
    dt = seconds_elapsed(earlier, later)
    return dt if dt > 0.0 else 1.0


class CameraPoseAcquisition:
    """Accumulates a smoothed camera-to-room estimate.

    ``last_paired`` advances on every paired report and times the motion gate;
    ``last_accepted`` advances only when the smoothing filters take a sample.
    """

    def __init__(self, params: FusionParams):
        self.params = params
        self.position_filter = OneEuroFilter(params.one_euro)
        self.orientation_filter = QuaternionOneEuroFilter(params.one_euro)
        self.reports = 0
        self.rejected = 0
        self.first: Optional[TimeValue] = None
        self.last_paired: Optional[TimeValue] = None
        self.last_accepted: Optional[TimeValue] = None
        self._last_device_q: Optional[np.ndarray] = None

    def handle_report(self, report: PoseReport, orientation: OrientationReport) -> bool:
        """Feed one paired sample; returns False if it was rejected."""
        prev_q = self._last_device_q
        gate_dt = _elapsed_or_one(self.last_paired, report.timestamp)
        self._last_device_q = orientation.quaternion.copy()
        self.last_paired = report.timestamp
        limit = self.params.calibration_max_angular_speed
        if limit > 0.0 and prev_q is not None:
            speed = q_angle_between(prev_q, orientation.quaternion) / gate_dt
            if speed > limit:
                self.rejected += 1
                logger.debug(
                    "[CALIB] rejected sample during rotation (%.3f rad/s > %.3f)",
                    speed,
                    limit,
                )
                return False

        dt = _elapsed_or_one(self.last_accepted, report.timestamp)
        self.last_accepted = report.timestamp

        # Device pose in camera is cTd; IMU gives room-from-device rotation rTd.
        # rTc = rTd * cTd^-1 with the device taken to sit at the room origin.
        candidate = compose(pose_from_rotation(orientation.quaternion), inverse(report.pose))
        self.position_filter.filter(dt, candidate.position)
        self.orientation_filter.filter(dt, candidate.quaternion)
        self.reports += 1
        if self.first is None:
            self.first = report.timestamp
        return True

    def finished(self) -> bool:
        return self.reports >= self.params.required_samples

    def timed_out(self, now: TimeValue) -> bool:
        timeout = self.params.calibration_timeout_s
        if timeout <= 0.0 or self.first is None:
            return False
        return seconds_elapsed(self.first, now) > timeout

    def camera_to_room(self) -> Pose6D:
        position = self.position_filter.state
        quaternion = self.orientation_filter.state
        if position is None or quaternion is None:
            raise RuntimeError("no camera pose samples accumulated yet")
        return make_pose(position, quaternion)


class RunningFusion:
    """Kalman filter seeded from the calibrated camera pose."""

    def __init__(
        self,
        camera_to_room: Pose6D,
        initial_orientation: OrientationReport,
        initial_video: PoseReport,
        params: FusionParams,
    ):
        self.camera_to_room = camera_to_room
        self.last_orientation = initial_orientation.timestamp
        self.last_position = initial_video.timestamp

        self.imu_covariance = validate_covariance(diagonal_covariance(params.imu_error), 3)
        self.camera_covariance = validate_covariance(
            diagonal_covariance(
                tuple(params.camera_position_error) + tuple(params.camera_orientation_error)
            ),
            6,
        )

        room_pose = self.camera_pose_to_room(initial_video)
        x0 = np.zeros(STATE_DIM, dtype=np.float64)
        x0[POSITION] = room_pose.position
        state = PoseState(
            state_vector=x0,
            quaternion=room_pose.quaternion,
            error_covariance=diagonal_covariance(params.initial_state_error),
        )
        process_model = PoseDampedConstantVelocityProcessModel(
            damping=params.damping,
            noise_autocorrelation=params.noise_autocorrelation,
        )
        process_model.scale_noise(params.process_noise_scale)
        self.filter = FlexibleKalmanFilter(state, process_model)

    def camera_pose_to_room(self, report: PoseReport) -> Pose6D:
        return compose(self.camera_to_room, report.pose)

    def _pre_report(self, timestamp: TimeValue, last: TimeValue) -> bool:
        dt = seconds_elapsed(last, timestamp)
        if dt <= 0.0:
            logger.debug("[FUSION] skipping report with non-positive dt %.6f", dt)
            return False
        self.filter.predict(dt)
        return True

    def handle_orientation_report(self, report: OrientationReport) -> bool:
        """Returns True when the report was used for a correction."""
        if not self._pre_report(report.timestamp, self.last_orientation):
            return False
        self.last_orientation = report.timestamp
        self.filter.correct(
            AbsoluteOrientationMeasurement(report.quaternion, self.imu_covariance)
        )
        return True

    def handle_video_report(self, report: PoseReport) -> bool:
        """Returns True when the report was used for a correction."""
        if not self._pre_report(report.timestamp, self.last_position):
            return False
        self.last_position = report.timestamp
        room_pose = self.camera_pose_to_room(report)
        self.filter.correct(
            AbsolutePoseMeasurement(
                room_pose.position, room_pose.quaternion, self.camera_covariance
            )
        )
        return True

    def get_pose(self) -> Pose6D:
        state = self.filter.state
        return Pose6D(
            position=state.get_position(),
            quaternion=state.get_combined_quaternion(),
        )


class VideoIMUFusion:
    """Routes sensor reports through calibration and then fusion.

    orientation_state:
      Optional query for the most recent IMU report. Defaults to the last
      orientation report handed to this controller.
    """

    def __init__(
        self,
        pose_sink: PoseSink,
        params: FusionParams | None = None,
        orientation_state: Callable[[], Optional[OrientationReport]] | None = None,
    ):
        self.pose_sink = pose_sink
        self.params = params or FusionParams()
        self._orientation_state = orientation_state or self._latest_orientation_report
        self._latest_orientation: Optional[OrientationReport] = None
        self._phase_data: Union[CameraPoseAcquisition, RunningFusion]
        self._enter_camera_pose_acquisition()

    def _latest_orientation_report(self) -> Optional[OrientationReport]:
        return self._latest_orientation

    @property
    def phase(self) -> FusionPhase:
        if isinstance(self._phase_data, RunningFusion):
            return FusionPhase.RUNNING
        return FusionPhase.ACQUIRING_CAMERA_POSE

    @property
    def is_running(self) -> bool:
        return self.phase is FusionPhase.RUNNING

    @property
    def camera_to_room(self) -> Optional[Pose6D]:
        if isinstance(self._phase_data, RunningFusion):
            return self._phase_data.camera_to_room
        return None

    @property
    def filter(self) -> Optional[FlexibleKalmanFilter]:
        if isinstance(self._phase_data, RunningFusion):
            return self._phase_data.filter
        return None

    @property
    def samples_acquired(self) -> int:
        if isinstance(self._phase_data, CameraPoseAcquisition):
            return self._phase_data.reports
        return self.params.required_samples

    def _enter_camera_pose_acquisition(self) -> CameraPoseAcquisition:
        acquisition = CameraPoseAcquisition(self.params)
        self._phase_data = acquisition
        logger.info(
            "[CALIB] acquiring camera pose (%d samples required)",
            self.params.required_samples,
        )
        return acquisition

    def _enter_running(self, camera_to_room: Pose6D, video: PoseReport) -> None:
        orientation = self._orientation_state()
        if orientation is None:
            raise RuntimeError("an orientation report is required before fusion starts")
        p = camera_to_room.position
        logger.info(
            "[CALIB] camera is located in the room at roughly (%.3f, %.3f, %.3f)",
            p[0],
            p[1],
            p[2],
        )
        self._phase_data = RunningFusion(camera_to_room, orientation, video, self.params)
        logger.info("[FUSION] running")

    def handle_orientation_report(self, report: OrientationReport) -> None:
        self._latest_orientation = report
        running = self._phase_data
        if not isinstance(running, RunningFusion):
            return
        try:
            corrected = running.handle_orientation_report(report)
        except KalmanCorrectionError as exc:
            logger.warning("[FUSION] IMU correction rejected: %s", exc)
            return
        if corrected:
            self._send_fused(running, report.timestamp)

    def handle_pose_report(self, report: PoseReport) -> None:
        running = self._phase_data
        if not isinstance(running, RunningFusion):
            self._handle_pose_during_startup(running, report)
            return
        try:
            corrected = running.handle_video_report(report)
        except KalmanCorrectionError as exc:
            logger.warning("[FUSION] video correction rejected: %s", exc)
            corrected = False
        if corrected:
            self._send_fused(running, report.timestamp)

        room_pose = running.camera_pose_to_room(report)
        self.pose_sink.send_pose(
            FusedPoseSample(
                timestamp=report.timestamp,
                position=room_pose.position,
                quaternion=room_pose.quaternion,
                sensor=TRANSFORMED_VIDEO_SENSOR,
            )
        )

    def _handle_pose_during_startup(
        self, acquisition: CameraPoseAcquisition, report: PoseReport
    ) -> None:
        orientation = self._orientation_state()
        if orientation is None:
            logger.debug("[CALIB] no IMU orientation yet, dropping video report")
            return
        if acquisition.timed_out(report.timestamp):
            logger.warning(
                "[CALIB] acquisition did not finish within %.1fs (%d/%d samples, "
                "%d rejected), restarting",
                self.params.calibration_timeout_s,
                acquisition.reports,
                self.params.required_samples,
                acquisition.rejected,
            )
            acquisition = self._enter_camera_pose_acquisition()

        acquisition.handle_report(report, orientation)
        if acquisition.finished():
            self._enter_running(acquisition.camera_to_room(), report)

    def _send_fused(self, running: RunningFusion, timestamp: TimeValue) -> None:
        pose = running.get_pose()
        self.pose_sink.send_pose(
            FusedPoseSample(
                timestamp=timestamp,
                position=pose.position,
                quaternion=pose.quaternion,
                sensor=FUSED_SENSOR,
            )
        )
