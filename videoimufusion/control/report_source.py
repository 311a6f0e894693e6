"""Report sources feeding the fusion controller.

Sources deliver reports one at a time, in order, on the calling thread; the
controller relies on that serialization.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterator

import numpy as np

from ..math3d.quaternion import axis_angle_to_q, q_mul, q_normalize, rotvec_to_q
from .pose import Pose6D, compose, inverse, make_pose
from .reports import (
    OrientationReport,
    PoseReport,
    Report,
    TimeValue,
    parse_report_line,
)

logger = logging.getLogger(__name__)

OrientationCallback = Callable[[OrientationReport], None]
PoseCallback = Callable[[PoseReport], None]


class ReportSource:
    """Base interface for orientation/pose report producers."""

    def reports(self) -> Iterator[Report]:
        raise NotImplementedError

    def run(self, on_orientation: OrientationCallback, on_pose: PoseCallback) -> int:
        """Deliver every report to the matching callback; returns the count."""
        count = 0
        for report in self.reports():
            if isinstance(report, PoseReport):
                on_pose(report)
            else:
                on_orientation(report)
            count += 1
        return count

    def close(self) -> None:
        pass


class ReplayReportSource(ReportSource):
    """Replays a JSON-lines report log (see ``control.reports``)."""

    def __init__(self, path: str):
        self.path = Path(path)
        if not self.path.is_file():
            raise OSError(f"report log not found: {self.path}")
        self.skipped = 0

    def reports(self) -> Iterator[Report]:
        self.skipped = 0
        with self.path.open("r", encoding="utf-8") as fh:
            for lineno, raw_line in enumerate(fh, start=1):
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                report = parse_report_line(line)
                if report is None:
                    self.skipped += 1
                    logger.debug("[REPLAY] %s:%d: skipping malformed record", self.path, lineno)
                    continue
                yield report
        if self.skipped:
            logger.warning("[REPLAY] skipped %d malformed records in %s", self.skipped, self.path)


def _time_from_us(t_us: int) -> TimeValue:
    return TimeValue(seconds=t_us // 1_000_000, microseconds=t_us % 1_000_000)


class SyntheticReportSource(ReportSource):
    """Simulated IMU + video tracker watching a device at the room origin.

    camera_position / camera_yaw_deg:
      Camera-to-room transform the calibration should recover.
    yaw_rate_deg:
      Constant device rotation about +y (deg/s); 0 keeps it stationary.
    position_noise / orientation_noise:
      Standard deviations (m, rad) added to video and IMU samples.
    """

    def __init__(
        self,
        duration_s: float = 5.0,
        imu_hz: float = 100.0,
        video_hz: float = 10.0,
        camera_position=(1.0, 0.0, 0.0),
        camera_yaw_deg: float = 0.0,
        yaw_rate_deg: float = 0.0,
        position_noise: float = 0.0,
        orientation_noise: float = 0.0,
        seed: int = 0,
    ):
        if duration_s <= 0.0 or imu_hz <= 0.0 or video_hz <= 0.0:
            raise ValueError("duration and sensor rates must be > 0")
        self.duration_s = float(duration_s)
        self.imu_period_us = int(round(1e6 / imu_hz))
        self.video_period_us = int(round(1e6 / video_hz))
        self.camera_to_room = make_pose(
            camera_position,
            axis_angle_to_q(np.array([0.0, 1.0, 0.0]), np.radians(camera_yaw_deg)),
        )
        self.yaw_rate = float(np.radians(yaw_rate_deg))
        self.position_noise = float(position_noise)
        self.orientation_noise = float(orientation_noise)
        self.seed = int(seed)
        logger.info(
            "[SYNTH] duration=%.1fs imu=%.0fHz video=%.0fHz camera=(%.2f, %.2f, %.2f) "
            "yaw_rate=%.1fdeg/s",
            self.duration_s,
            imu_hz,
            video_hz,
            *self.camera_to_room.position,
            yaw_rate_deg,
        )

    def device_pose(self, t: float) -> Pose6D:
        q = axis_angle_to_q(np.array([0.0, 1.0, 0.0]), self.yaw_rate * t)
        return make_pose(np.zeros(3, dtype=np.float64), q)

    def _noisy_q(self, q: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        if self.orientation_noise <= 0.0:
            return q
        return q_normalize(q_mul(rotvec_to_q(rng.normal(0.0, self.orientation_noise, 3)), q))

    def reports(self) -> Iterator[Report]:
        rng = np.random.default_rng(self.seed)
        room_to_camera = inverse(self.camera_to_room)
        end_us = int(round(self.duration_s * 1e6))
        next_imu = self.imu_period_us
        next_video = self.video_period_us
        while min(next_imu, next_video) <= end_us:
            # IMU first on ties so a fresh orientation is available to pair with.
            if next_imu <= next_video:
                t_us = next_imu
                next_imu += self.imu_period_us
                device = self.device_pose(t_us / 1e6)
                yield OrientationReport(
                    timestamp=_time_from_us(t_us),
                    quaternion=self._noisy_q(device.quaternion, rng),
                )
            else:
                t_us = next_video
                next_video += self.video_period_us
                seen = compose(room_to_camera, self.device_pose(t_us / 1e6))
                position = seen.position
                if self.position_noise > 0.0:
                    position = position + rng.normal(0.0, self.position_noise, 3)
                yield PoseReport(
                    timestamp=_time_from_us(t_us),
                    position=position,
                    quaternion=self._noisy_q(seen.quaternion, rng),
                )
