import logging

import numpy as np

from videoimufusion.control.controller import (
    CameraPoseAcquisition,
    FusionParams,
    FusionPhase,
    VideoIMUFusion,
)
from videoimufusion.control.pose_sink import (
    FUSED_SENSOR,
    TRANSFORMED_VIDEO_SENSOR,
    RecordingPoseSink,
)
from videoimufusion.control.report_source import SyntheticReportSource
from videoimufusion.control.reports import OrientationReport, PoseReport, TimeValue
from videoimufusion.filters.one_euro import OneEuroFilter
from videoimufusion.kalman.state import STATE_DIM
from videoimufusion.math3d.quaternion import axis_angle_to_q, q_angle_between

IDENTITY = np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)


def _tv(t_us: int) -> TimeValue:
    return TimeValue(seconds=t_us // 1_000_000, microseconds=t_us % 1_000_000)


def _orientation(t_us: int, q=IDENTITY) -> OrientationReport:
    return OrientationReport(timestamp=_tv(t_us), quaternion=q)


def _video(t_us: int, position=(-1.0, 0.0, 0.0), q=IDENTITY) -> PoseReport:
    return PoseReport(timestamp=_tv(t_us), position=np.array(position), quaternion=q)


def _calibrated(sink: RecordingPoseSink, params: FusionParams | None = None) -> VideoIMUFusion:
    fusion = VideoIMUFusion(pose_sink=sink, params=params)
    fusion.handle_orientation_report(_orientation(0))
    for k in range(1, 11):
        fusion.handle_pose_report(_video(k * 100_000))
    assert fusion.is_running
    return fusion


def test_calibration_transitions_exactly_at_tenth_sample():
    sink = RecordingPoseSink()
    fusion = VideoIMUFusion(pose_sink=sink)
    assert fusion.phase is FusionPhase.ACQUIRING_CAMERA_POSE
    assert fusion.filter is None
    assert fusion.camera_to_room is None

    fusion.handle_orientation_report(_orientation(0))
    transitions = 0
    for k in range(1, 16):
        was_running = fusion.is_running
        # camera at (1, 0, 0) in the room sees the device at the origin
        fusion.handle_pose_report(_video(k * 100_000))
        if fusion.is_running and not was_running:
            transitions += 1
            assert k == 10
        if k < 10:
            assert fusion.samples_acquired == k
    assert transitions == 1

    np.testing.assert_allclose(fusion.camera_to_room.position, [1.0, 0.0, 0.0], atol=0.05)
    assert q_angle_between(fusion.camera_to_room.quaternion, IDENTITY) < 1e-6
    state = fusion.filter.state
    np.testing.assert_allclose(state.get_position(), [0.0, 0.0, 0.0], atol=0.05)
    np.testing.assert_allclose(state.get_velocity(), np.zeros(3), atol=1e-9)


def test_calibration_recovers_noisy_camera_pose():
    source = SyntheticReportSource(
        duration_s=1.0,
        camera_position=(1.0, 0.0, 0.0),
        position_noise=0.01,
        orientation_noise=0.001,
        seed=3,
    )
    sink = RecordingPoseSink()
    fusion = VideoIMUFusion(pose_sink=sink)
    source.run(fusion.handle_orientation_report, fusion.handle_pose_report)
    assert fusion.is_running
    np.testing.assert_allclose(fusion.camera_to_room.position, [1.0, 0.0, 0.0], atol=0.05)


def test_seeded_covariance_and_process_noise_come_from_params():
    params = FusionParams(initial_state_error=(2.0,) * STATE_DIM, process_noise_scale=0.5)
    fusion = _calibrated(RecordingPoseSink(), params)
    np.testing.assert_allclose(fusion.filter.state.error_covariance(), 2.0 * np.eye(STATE_DIM))
    np.testing.assert_allclose(
        fusion.filter.process_model.noise_autocorrelation,
        0.5 * np.array(params.noise_autocorrelation),
    )


def test_video_report_without_orientation_is_dropped():
    sink = RecordingPoseSink()
    fusion = VideoIMUFusion(pose_sink=sink)
    for k in range(1, 20):
        fusion.handle_pose_report(_video(k * 100_000))
    assert fusion.phase is FusionPhase.ACQUIRING_CAMERA_POSE
    assert fusion.samples_acquired == 0
    assert sink.samples == []


def test_orientation_state_query_is_used_for_pairing():
    latest = _orientation(0)
    sink = RecordingPoseSink()
    fusion = VideoIMUFusion(pose_sink=sink, orientation_state=lambda: latest)
    for k in range(1, 11):
        fusion.handle_pose_report(_video(k * 100_000))
    assert fusion.is_running


def test_independent_rate_fusion_emits_every_report():
    source = SyntheticReportSource(duration_s=2.0, imu_hz=100.0, video_hz=10.0)
    sink = RecordingPoseSink()
    fusion = VideoIMUFusion(pose_sink=sink)
    count = source.run(fusion.handle_orientation_report, fusion.handle_pose_report)
    assert count == 220

    # calibration finishes on the video report at t=1.0s; the remaining second
    # holds 100 IMU and 10 video reports
    fused = sink.fused()
    assert len(fused) == 110
    assert len(sink.for_sensor(TRANSFORMED_VIDEO_SENSOR)) == 10
    assert all(s.sensor == FUSED_SENSOR for s in fused)
    assert fused[0].timestamp == _tv(1_010_000)
    assert fused[-1].timestamp == _tv(2_000_000)

    last = fused[-1]
    np.testing.assert_allclose(last.position, np.zeros(3), atol=0.05)
    assert q_angle_between(last.quaternion, IDENTITY) < 0.01


def test_rotating_device_tracks_imu_orientation():
    source = SyntheticReportSource(
        duration_s=3.0, camera_position=(0.0, 0.0, 2.0), yaw_rate_deg=10.0
    )
    sink = RecordingPoseSink()
    fusion = VideoIMUFusion(pose_sink=sink)
    source.run(fusion.handle_orientation_report, fusion.handle_pose_report)
    fused = sink.fused()
    truth = source.device_pose(fused[-1].timestamp.to_seconds())
    # the filter may lag a steady rotation but must follow it
    assert q_angle_between(fused[-1].quaternion, truth.quaternion) < q_angle_between(
        fused[0].quaternion, truth.quaternion
    )
    for s in fused:
        assert abs(float(np.linalg.norm(s.quaternion)) - 1.0) < 1e-9


def test_non_positive_dt_reports_are_skipped_per_sensor():
    sink = RecordingPoseSink()
    fusion = _calibrated(sink)

    fusion.handle_orientation_report(_orientation(1_010_000))
    assert len(sink.fused()) == 1
    P = fusion.filter.state.error_covariance()

    fusion.handle_orientation_report(_orientation(1_010_000))  # duplicate
    fusion.handle_orientation_report(_orientation(1_005_000))  # out of order
    assert len(sink.fused()) == 1
    np.testing.assert_array_equal(fusion.filter.state.error_covariance(), P)

    # the video stream keeps its own clock, so it is not blocked by the IMU
    fusion.handle_pose_report(_video(1_100_000))
    assert len(sink.fused()) == 2
    fusion.handle_pose_report(_video(1_100_000))
    assert len(sink.fused()) == 2


def test_rejected_correction_skips_fused_output(caplog):
    error = (1e20,) + (1.0,) * (STATE_DIM - 1)
    sink = RecordingPoseSink()
    fusion = _calibrated(sink, FusionParams(initial_state_error=error))
    with caplog.at_level(logging.WARNING):
        fusion.handle_pose_report(_video(1_100_000))
    assert "video correction rejected" in caplog.text
    assert sink.fused() == []
    assert len(sink.for_sensor(TRANSFORMED_VIDEO_SENSOR)) == 1

    # orientation corrections are unaffected
    fusion.handle_orientation_report(_orientation(1_010_000))
    assert len(sink.fused()) == 1


def test_transformed_video_pose_is_in_room_frame():
    sink = RecordingPoseSink()
    fusion = _calibrated(sink)
    fusion.handle_pose_report(_video(1_100_000, position=(-1.0, 0.5, 0.0)))
    debug = sink.for_sensor(TRANSFORMED_VIDEO_SENSOR)[-1]
    np.testing.assert_allclose(debug.position, [0.0, 0.5, 0.0], atol=1e-9)


def test_calibration_timeout_restarts_acquisition(caplog):
    sink = RecordingPoseSink()
    fusion = VideoIMUFusion(pose_sink=sink, params=FusionParams(calibration_timeout_s=0.5))
    fusion.handle_orientation_report(_orientation(0))
    for k in range(1, 7):
        fusion.handle_pose_report(_video(k * 100_000))
    assert fusion.samples_acquired == 6
    with caplog.at_level(logging.WARNING):
        fusion.handle_pose_report(_video(700_000))
    assert "restarting" in caplog.text
    assert fusion.samples_acquired == 1


def test_fast_rotation_samples_are_rejected_during_acquisition():
    sink = RecordingPoseSink()
    fusion = VideoIMUFusion(
        pose_sink=sink, params=FusionParams(calibration_max_angular_speed=0.5)
    )
    axis = np.array([0.0, 1.0, 0.0])
    for k in range(1, 6):
        fusion.handle_orientation_report(_orientation(k * 100_000 - 1, axis_angle_to_q(axis, 0.2 * k)))
        fusion.handle_pose_report(_video(k * 100_000))
    assert fusion.samples_acquired == 1


class _DtRecordingFilter(OneEuroFilter):
    def __init__(self):
        super().__init__()
        self.dts: list[float] = []

    def filter(self, dt, sample):
        self.dts.append(dt)
        return super().filter(dt, sample)


def test_rejected_sample_does_not_shorten_filter_dt():
    acquisition = CameraPoseAcquisition(FusionParams(calibration_max_angular_speed=0.5))
    recorder = _DtRecordingFilter()
    acquisition.position_filter = recorder
    axis = np.array([0.0, 1.0, 0.0])

    assert acquisition.handle_report(_video(100_000), _orientation(100_000))
    # 0.2 rad in 0.1 s is over the gate
    assert not acquisition.handle_report(
        _video(200_000), _orientation(200_000, axis_angle_to_q(axis, 0.2))
    )
    assert acquisition.handle_report(
        _video(300_000), _orientation(300_000, axis_angle_to_q(axis, 0.2))
    )

    assert acquisition.rejected == 1
    assert acquisition.reports == 2
    assert len(recorder.dts) == 2
    assert abs(recorder.dts[-1] - 0.2) < 1e-9
