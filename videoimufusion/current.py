"""
Video + IMU pose fusion:
- IMU orientation reports (high rate, drift-prone) and video tracker pose
  reports (low rate, absolute) arrive as timestamped callbacks
- Startup: camera-to-room transform estimated from paired samples, smoothed
  with One Euro filters
- Running: error-state Kalman filter (damped constant velocity) corrected by
  both sensors at their own rates
- Fused pose (and the video pose re-expressed in the room) pushed to sinks
- Sources: synthetic sensors or a recorded JSON-lines report log

Deps:
  uv add numpy pyyaml
"""

from __future__ import annotations

import logging

from .config import FusionConfig, parse_args
from .control.controller import FusionParams, VideoIMUFusion
from .control.pose_sink import FanoutPoseSink, JsonLinesPoseSink, PoseSink, TuiPoseSink
from .control.report_source import ReplayReportSource, ReportSource, SyntheticReportSource
from .filters.one_euro import OneEuroParams

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_fusion_params(cfg: FusionConfig) -> FusionParams:
    params = FusionParams(
        required_samples=cfg.required_samples,
        initial_state_error=tuple(cfg.initial_state_error),
        imu_error=tuple(cfg.imu_error),
        camera_position_error=tuple(cfg.camera_position_error),
        camera_orientation_error=tuple(cfg.camera_orientation_error),
        process_noise_scale=cfg.process_noise_scale,
        damping=cfg.damping,
        noise_autocorrelation=tuple(cfg.noise_autocorrelation),
        one_euro=OneEuroParams(
            min_cutoff=cfg.euro_min_cutoff,
            beta=cfg.euro_beta,
            derivative_cutoff=cfg.euro_derivative_cutoff,
        ),
        calibration_timeout_s=cfg.calibration_timeout_s,
        calibration_max_angular_speed=cfg.calibration_max_angular_speed,
    )
    logger.info(
        "[FUSION] required_samples=%d process_noise_scale=%.2f damping=%.2f "
        "calibration_timeout=%.1fs max_angular_speed=%.2frad/s",
        params.required_samples,
        params.process_noise_scale,
        params.damping,
        params.calibration_timeout_s,
        params.calibration_max_angular_speed,
    )
    return params


def build_report_source(cfg: FusionConfig) -> ReportSource:
    if cfg.source == "replay":
        logger.info("[REPLAY] reading reports from %s", cfg.reports)
        return ReplayReportSource(cfg.reports)
    if cfg.source == "synthetic":
        return SyntheticReportSource(
            duration_s=cfg.synth_duration_s,
            imu_hz=cfg.synth_imu_hz,
            video_hz=cfg.synth_video_hz,
            camera_position=cfg.synth_camera_position,
            camera_yaw_deg=cfg.synth_camera_yaw_deg,
            yaw_rate_deg=cfg.synth_yaw_rate_deg,
            position_noise=cfg.synth_position_noise,
            orientation_noise=cfg.synth_orientation_noise,
            seed=cfg.synth_seed,
        )
    raise RuntimeError(f"Unsupported report source: {cfg.source}")


def build_pose_sink(cfg: FusionConfig) -> PoseSink:
    sinks: list[PoseSink] = [TuiPoseSink(display_hz=cfg.display_hz, cli_output=cfg.cli_output)]
    if cfg.output:
        sinks.append(JsonLinesPoseSink(cfg.output))
    return FanoutPoseSink(sinks)


def main(argv=None) -> int:
    cfg = parse_args(argv)
    configure_logging(cfg.log_level)

    source = build_report_source(cfg)
    try:
        sink = build_pose_sink(cfg)
        try:
            fusion = VideoIMUFusion(pose_sink=sink, params=build_fusion_params(cfg))
            count = source.run(fusion.handle_orientation_report, fusion.handle_pose_report)
        finally:
            sink.close()
    finally:
        source.close()

    logger.info("[FUSION] processed %d reports, phase=%s", count, fusion.phase.value)
    if not fusion.is_running:
        logger.warning(
            "[CALIB] camera pose never acquired (%d/%d samples)",
            fusion.samples_acquired,
            cfg.required_samples,
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
