"""Output sinks for fused pose samples."""

from __future__ import annotations

import contextlib
import json
import logging
import sys
import time
from dataclasses import dataclass
from typing import Iterable, Optional, TextIO

import numpy as np

from .reports import TimeValue

logger = logging.getLogger(__name__)

# Output channels.
FUSED_SENSOR = 0
TRANSFORMED_VIDEO_SENSOR = 1

_SENSOR_NAMES = {
    FUSED_SENSOR: "fused",
    TRANSFORMED_VIDEO_SENSOR: "video-in-room",
}


@dataclass(slots=True)
class FusedPoseSample:
    timestamp: TimeValue
    position: np.ndarray
    quaternion: np.ndarray
    sensor: int = FUSED_SENSOR

    def to_payload(self) -> dict:
        return {
            "t": [self.timestamp.seconds, self.timestamp.microseconds],
            "sensor": int(self.sensor),
            "position_m": [float(v) for v in self.position],
            "quaternion_wxyz": [float(v) for v in self.quaternion],
        }


class PoseSink:
    """Base interface for fused pose consumers."""

    def send_pose(self, sample: FusedPoseSample) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class RecordingPoseSink(PoseSink):
    """Keeps every sample in memory."""

    def __init__(self):
        self.samples: list[FusedPoseSample] = []

    def send_pose(self, sample: FusedPoseSample) -> None:
        self.samples.append(sample)

    def for_sensor(self, sensor: int) -> list[FusedPoseSample]:
        return [s for s in self.samples if s.sensor == sensor]

    def fused(self) -> list[FusedPoseSample]:
        return self.for_sensor(FUSED_SENSOR)


class JsonLinesPoseSink(PoseSink):
    """Writes one JSON object per sample."""

    def __init__(self, path: str):
        self.path = path
        self._fh: Optional[TextIO] = open(path, "w", encoding="utf-8")
        self.count = 0
        logger.info("[OUTPUT] writing fused poses to %s", path)

    def send_pose(self, sample: FusedPoseSample) -> None:
        if self._fh is None:
            return
        self._fh.write(json.dumps(sample.to_payload()))
        self._fh.write("\n")
        self.count += 1

    def close(self) -> None:
        if self._fh is None:
            return
        self._fh.close()
        self._fh = None
        logger.info("[OUTPUT] wrote %d samples to %s", self.count, self.path)


def _status_lines(sample: FusedPoseSample, counts: dict[int, int]) -> list[str]:
    p = sample.position
    q = sample.quaternion
    return [
        "Video/IMU Fusion Live Pose",
        f"t (s)         = {sample.timestamp.to_seconds():.6f}",
        f"xyz (m)       = ({p[0]: .3f}, {p[1]: .3f}, {p[2]: .3f})",
        f"q=[w,x,y,z]   = [{q[0]: .4f}, {q[1]: .4f}, {q[2]: .4f}, {q[3]: .4f}]",
        f"fused / video = {counts.get(FUSED_SENSOR, 0)} / "
        f"{counts.get(TRANSFORMED_VIDEO_SENSOR, 0)}",
    ]


class TuiPoseSink(PoseSink):
    """Rate-limited terminal view of the fused pose.

    cli_output:
      "live" redraws a panel in place on a TTY; "scroll" (or a non-TTY
      stderr) logs one line per refresh instead.
    """

    def __init__(self, display_hz: float = 5.0, cli_output: str = "live"):
        self.interval = (1.0 / display_hz) if display_hz > 0.0 else 0.0
        self.enabled = display_hz > 0.0
        self.mode = "live" if cli_output == "live" else "scroll"
        self._is_tty = bool(getattr(sys.stderr, "isatty", lambda: False)())
        self._live_enabled = self.mode == "live" and self._is_tty
        self._line_count = 0
        self._last_t = 0.0
        self._counts: dict[int, int] = {}

    def send_pose(self, sample: FusedPoseSample) -> None:
        self._counts[sample.sensor] = self._counts.get(sample.sensor, 0) + 1
        if not self.enabled or sample.sensor != FUSED_SENSOR:
            return
        now = time.monotonic()
        if (now - self._last_t) < self.interval:
            return
        self._last_t = now
        self._emit(_status_lines(sample, self._counts), sample)

    def _emit(self, lines: list[str], sample: FusedPoseSample) -> None:
        if not self._live_enabled:
            p = sample.position
            q = sample.quaternion
            logger.info(
                "[POSE] t=%.3f xyz=(%.3f, %.3f, %.3f) q=(%.4f, %.4f, %.4f, %.4f)",
                sample.timestamp.to_seconds(),
                p[0],
                p[1],
                p[2],
                q[0],
                q[1],
                q[2],
                q[3],
            )
            return

        out = sys.stderr
        if self._line_count > 0:
            out.write(f"\x1b[{self._line_count}F")

        max_lines = max(self._line_count, len(lines))
        for i in range(max_lines):
            line = lines[i] if i < len(lines) else ""
            out.write("\x1b[2K")
            out.write(line)
            out.write("\n")
        out.flush()
        self._line_count = len(lines)

    def close(self) -> None:
        logger.info(
            "[OUTPUT] emitted %s",
            ", ".join(
                f"{_SENSOR_NAMES.get(k, str(k))}={v}" for k, v in sorted(self._counts.items())
            )
            or "nothing",
        )


class FanoutPoseSink(PoseSink):
    """Forwards every sample to several sinks."""

    def __init__(self, sinks: Iterable[PoseSink]):
        self.sinks = list(sinks)

    def send_pose(self, sample: FusedPoseSample) -> None:
        for sink in self.sinks:
            sink.send_pose(sample)

    def close(self) -> None:
        # Every sink is closed even when an earlier one raises.
        with contextlib.ExitStack() as stack:
            for sink in reversed(self.sinks):
                stack.callback(sink.close)
