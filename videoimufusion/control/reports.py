"""Timestamped sensor reports consumed by the fusion controller.

JSON record schema (one object per line in replay logs):
{
  "type": "orientation" | "pose",
  "t": [seconds, microseconds] or seconds as float,
  "position_m": [x, y, z],            # pose only
  "quaternion_wxyz": [w, x, y, z]
}
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from ..math3d.quaternion import q_normalize
from .pose import Pose6D, make_pose


@dataclass(frozen=True, slots=True)
class TimeValue:
    seconds: int
    microseconds: int = 0

    @classmethod
    def from_seconds(cls, t: float) -> "TimeValue":
        t = float(t)
        sec = math.floor(t)
        usec = int(round((t - sec) * 1e6))
        if usec >= 1_000_000:
            sec += 1
            usec -= 1_000_000
        return cls(seconds=int(sec), microseconds=usec)

    def to_seconds(self) -> float:
        return self.seconds + self.microseconds / 1e6


def seconds_elapsed(earlier: TimeValue, later: TimeValue) -> float:
    return (later.seconds - earlier.seconds) + (
        later.microseconds - earlier.microseconds
    ) / 1e6


@dataclass(slots=True)
class OrientationReport:
    """Device-to-room orientation from the IMU."""

    timestamp: TimeValue
    quaternion: np.ndarray

    def __post_init__(self):
        self.quaternion = q_normalize(np.asarray(self.quaternion, dtype=np.float64).reshape(4))


@dataclass(slots=True)
class PoseReport:
    """Device pose in the video tracker's (camera) frame."""

    timestamp: TimeValue
    position: np.ndarray
    quaternion: np.ndarray

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3).copy()
        self.quaternion = q_normalize(np.asarray(self.quaternion, dtype=np.float64).reshape(4))

    @property
    def pose(self) -> Pose6D:
        return make_pose(self.position, self.quaternion)


Report = Union[OrientationReport, PoseReport]


def _parse_timestamp(raw) -> Optional[TimeValue]:
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        try:
            sec, usec = int(raw[0]), int(raw[1])
        except (TypeError, ValueError):
            return None
        return TimeValue(seconds=sec, microseconds=usec)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool) and math.isfinite(raw):
        return TimeValue.from_seconds(float(raw))
    return None


def _parse_vector(raw, size: int) -> Optional[np.ndarray]:
    if raw is None:
        return None
    try:
        v = np.asarray(raw, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        return None
    if v.size != size or not np.isfinite(v).all():
        return None
    return v


def parse_report_payload(payload: dict) -> Optional[Report]:
    kind = payload.get("type")
    timestamp = _parse_timestamp(payload.get("t", payload.get("timestamp")))
    q = _parse_vector(payload.get("quaternion_wxyz", payload.get("quaternion")), 4)
    if timestamp is None or q is None or float(np.linalg.norm(q)) < 1e-12:
        return None

    if kind == "orientation":
        return OrientationReport(timestamp=timestamp, quaternion=q)
    if kind == "pose":
        p = _parse_vector(payload.get("position_m", payload.get("position")), 3)
        if p is None:
            return None
        return PoseReport(timestamp=timestamp, position=p, quaternion=q)
    return None


def parse_report_line(line: str) -> Optional[Report]:
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return parse_report_payload(payload)


def report_to_payload(report: Report) -> dict:
    ts = [report.timestamp.seconds, report.timestamp.microseconds]
    if isinstance(report, PoseReport):
        return {
            "type": "pose",
            "t": ts,
            "position_m": [float(v) for v in report.position],
            "quaternion_wxyz": [float(v) for v in report.quaternion],
        }
    return {
        "type": "orientation",
        "t": ts,
        "quaternion_wxyz": [float(v) for v in report.quaternion],
    }
