import json

import pytest

from videoimufusion import current
from videoimufusion.config import FusionConfig
from videoimufusion.control.pose_sink import (
    FUSED_SENSOR,
    TRANSFORMED_VIDEO_SENSOR,
    RecordingPoseSink,
)
from videoimufusion.current import build_fusion_params, main


def test_build_fusion_params_maps_config():
    cfg = FusionConfig(required_samples=4, euro_beta=0.1, calibration_timeout_s=3.0)
    params = build_fusion_params(cfg)
    assert params.required_samples == 4
    assert params.one_euro.beta == 0.1
    assert params.calibration_timeout_s == 3.0
    assert params.imu_error == cfg.imu_error


def test_main_runs_synthetic_session(tmp_path):
    out = tmp_path / "fused.jsonl"
    rc = main(
        [
            "--synth-duration-s",
            "2",
            "--display-hz",
            "0",
            "--output",
            str(out),
        ]
    )
    assert rc == 0
    records = [json.loads(line) for line in out.read_text(encoding="utf-8").splitlines()]
    sensors = [r["sensor"] for r in records]
    assert sensors.count(FUSED_SENSOR) == 110
    assert sensors.count(TRANSFORMED_VIDEO_SENSOR) == 10


def test_main_replays_recorded_reports(tmp_path):
    reports = tmp_path / "reports.jsonl"
    lines = [
        json.dumps({"type": "orientation", "t": [0, 0], "quaternion_wxyz": [1, 0, 0, 0]})
    ]
    for k in range(1, 13):
        lines.append(
            json.dumps(
                {
                    "type": "pose",
                    "t": [k // 10, (k % 10) * 100_000],
                    "position_m": [-1, 0, 0],
                    "quaternion_wxyz": [1, 0, 0, 0],
                }
            )
        )
    reports.write_text("\n".join(lines), encoding="utf-8")

    out = tmp_path / "replayed.jsonl"
    rc = main(
        [
            "--source",
            "replay",
            "--reports",
            str(reports),
            "--display-hz",
            "0",
            "--output",
            str(out),
        ]
    )
    assert rc == 0
    records = [json.loads(line) for line in out.read_text(encoding="utf-8").splitlines()]
    # calibration consumes the first ten video reports
    assert [r["sensor"] for r in records].count(FUSED_SENSOR) == 2


def test_main_closes_sink_when_startup_fails(monkeypatch):
    sink = RecordingPoseSink()
    closed = []
    monkeypatch.setattr(sink, "close", lambda: closed.append(True))
    monkeypatch.setattr(current, "build_pose_sink", lambda cfg: sink)

    def broken_params(cfg):
        raise RuntimeError("bad fusion params")

    monkeypatch.setattr(current, "build_fusion_params", broken_params)
    with pytest.raises(RuntimeError, match="bad fusion params"):
        current.main(["--synth-duration-s", "1", "--display-hz", "0"])
    assert closed == [True]
