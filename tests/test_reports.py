import json

import numpy as np

from videoimufusion.control.reports import (
    OrientationReport,
    PoseReport,
    TimeValue,
    parse_report_line,
    parse_report_payload,
    report_to_payload,
    seconds_elapsed,
)


def test_seconds_elapsed_handles_microsecond_borrow():
    a = TimeValue(seconds=10, microseconds=900_000)
    b = TimeValue(seconds=11, microseconds=100_000)
    assert abs(seconds_elapsed(a, b) - 0.2) < 1e-12
    assert abs(seconds_elapsed(b, a) + 0.2) < 1e-12
    assert seconds_elapsed(a, a) == 0.0


def test_time_value_from_seconds():
    assert TimeValue.from_seconds(2.25) == TimeValue(seconds=2, microseconds=250_000)
    assert TimeValue.from_seconds(0.9999999) == TimeValue(seconds=1, microseconds=0)
    assert abs(TimeValue(3, 500_000).to_seconds() - 3.5) < 1e-12


def test_parse_report_payload_accepts_pose_schema():
    parsed = parse_report_payload(
        {
            "type": "pose",
            "t": [1, 500_000],
            "position_m": [0.1, -0.2, 1.5],
            "quaternion_wxyz": [2.0, 0.0, 0.0, 0.0],
        }
    )
    assert isinstance(parsed, PoseReport)
    assert parsed.timestamp == TimeValue(1, 500_000)
    np.testing.assert_allclose(parsed.position, [0.1, -0.2, 1.5])
    np.testing.assert_allclose(parsed.quaternion, [1.0, 0.0, 0.0, 0.0])


def test_parse_report_payload_accepts_float_timestamp_orientation():
    parsed = parse_report_payload(
        {"type": "orientation", "t": 0.25, "quaternion_wxyz": [1.0, 0.0, 0.0, 0.0]}
    )
    assert isinstance(parsed, OrientationReport)
    assert parsed.timestamp == TimeValue(0, 250_000)


def test_parse_report_line_rejects_invalid_json():
    assert parse_report_line("{not-json") is None
    assert parse_report_line("[1, 2, 3]") is None


def test_parse_report_payload_rejects_bad_fields():
    q = [1.0, 0.0, 0.0, 0.0]
    assert parse_report_payload({"type": "pose", "t": 1.0, "position_m": [0.0, 1.0], "quaternion_wxyz": q}) is None
    assert parse_report_payload({"type": "orientation", "t": 1.0, "quaternion_wxyz": [1.0, 0.0, 0.0]}) is None
    assert parse_report_payload({"type": "orientation", "t": 1.0, "quaternion_wxyz": [0.0] * 4}) is None
    assert parse_report_payload({"type": "orientation", "quaternion_wxyz": q}) is None
    assert parse_report_payload({"type": "gyro", "t": 1.0, "quaternion_wxyz": q}) is None


def test_report_payload_survives_json_line():
    report = PoseReport(
        timestamp=TimeValue(4, 20),
        position=np.array([1.0, 2.0, 3.0]),
        quaternion=np.array([0.0, 1.0, 0.0, 0.0]),
    )
    parsed = parse_report_line(json.dumps(report_to_payload(report)))
    assert isinstance(parsed, PoseReport)
    assert parsed.timestamp == report.timestamp
    np.testing.assert_allclose(parsed.position, report.position)
    np.testing.assert_allclose(parsed.quaternion, report.quaternion)
