"""CLI config and defaults."""

from __future__ import annotations

import argparse
import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from .kalman.state import STATE_DIM


@dataclass(frozen=True)
class FusionConfig:
    source: str = "synthetic"
    reports: str = ""
    output: str = ""
    log_level: str = "info"
    display_hz: float = 5.0
    cli_output: str = "live"
    required_samples: int = 10
    initial_state_error: tuple[float, ...] = (1.0,) * STATE_DIM
    imu_error: tuple[float, ...] = (1.0, 1.5, 1.0)
    camera_position_error: tuple[float, ...] = (1.0, 1.0, 1.0)
    camera_orientation_error: tuple[float, ...] = (1.1, 1.1, 1.1)
    process_noise_scale: float = 0.5
    damping: float = 0.1
    noise_autocorrelation: tuple[float, ...] = (0.01,) * 6
    euro_min_cutoff: float = 1.0
    euro_beta: float = 0.5
    euro_derivative_cutoff: float = 1.0
    calibration_timeout_s: float = 0.0
    calibration_max_angular_speed: float = 0.0
    synth_duration_s: float = 5.0
    synth_imu_hz: float = 100.0
    synth_video_hz: float = 10.0
    synth_camera_position: tuple[float, ...] = (1.0, 0.0, 0.0)
    synth_camera_yaw_deg: float = 0.0
    synth_yaw_rate_deg: float = 0.0
    synth_position_noise: float = 0.005
    synth_orientation_noise: float = 0.002
    synth_seed: int = 0


_CONFIG_FIELDS = {f.name for f in fields(FusionConfig)}
_INT_FIELDS = {
    "required_samples",
    "synth_seed",
}
_FLOAT_FIELDS = {
    "display_hz",
    "process_noise_scale",
    "damping",
    "euro_min_cutoff",
    "euro_beta",
    "euro_derivative_cutoff",
    "calibration_timeout_s",
    "calibration_max_angular_speed",
    "synth_duration_s",
    "synth_imu_hz",
    "synth_video_hz",
    "synth_camera_yaw_deg",
    "synth_yaw_rate_deg",
    "synth_position_noise",
    "synth_orientation_noise",
}
# name -> required length
_VECTOR_FIELDS = {
    "initial_state_error": STATE_DIM,
    "imu_error": 3,
    "camera_position_error": 3,
    "camera_orientation_error": 3,
    "noise_autocorrelation": 6,
    "synth_camera_position": 3,
}
_STRING_FIELDS = {
    "source",
    "reports",
    "output",
    "log_level",
    "cli_output",
}


def _parse_vector(value: Any, key: str) -> tuple[float, ...]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # A scalar fills every entry.
        return (float(value),) * _VECTOR_FIELDS[key]
    if isinstance(value, str):
        value = [v for v in value.replace(",", " ").split() if v]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"config key '{key}' expects a list of numbers, got {value!r}")
    out = tuple(float(v) for v in value)
    if len(out) != _VECTOR_FIELDS[key]:
        raise ValueError(
            f"config key '{key}' expects {_VECTOR_FIELDS[key]} values, got {len(out)}"
        )
    return out


def _coerce_config_value(key: str, value: Any) -> Any:
    try:
        if key in _INT_FIELDS:
            return int(value)
        if key in _FLOAT_FIELDS:
            return float(value)
        if key in _VECTOR_FIELDS:
            return _parse_vector(value, key)
        if key in _STRING_FIELDS:
            return "" if value is None else str(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid value for config key '{key}': {value!r}") from exc
    raise ValueError(f"unsupported config key '{key}'")


def _normalize_config_key(raw_key: Any) -> str:
    if not isinstance(raw_key, str):
        raise ValueError(f"config key must be string, got {type(raw_key).__name__}")
    key = raw_key.strip().replace("-", "_")
    if not key:
        raise ValueError("config key cannot be empty")
    return key


def _load_yaml_config(path: str) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ValueError(f"--config file not found: {p}")
    if not p.is_file():
        raise ValueError(f"--config must point to a file: {p}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"failed to read --config file {p}: {exc}") from exc
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to parse YAML config {p}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"--config root must be a mapping/object, got {type(loaded).__name__}")

    normalized: dict[str, Any] = {}
    for raw_key, raw_value in loaded.items():
        key = _normalize_config_key(raw_key)
        if key not in _CONFIG_FIELDS:
            raise ValueError(f"unknown config key in {p}: {raw_key!r}")
        normalized[key] = _coerce_config_value(key, raw_value)
    return normalized


def build_arg_parser() -> argparse.ArgumentParser:
    defaults = FusionConfig()
    ap = argparse.ArgumentParser(
        prog="videoimufusion",
        description="Fuse IMU orientation with video tracker poses into a room-frame pose.",
    )
    ap.add_argument(
        "--config",
        type=str,
        default="",
        help="YAML config file path. CLI args override YAML values.",
    )
    ap.add_argument(
        "--source",
        choices=["synthetic", "replay"],
        default=defaults.source,
        help="Report source: simulated sensors or a recorded JSON-lines log.",
    )
    ap.add_argument(
        "--reports",
        type=str,
        default=defaults.reports,
        help="JSON-lines report log for --source replay.",
    )
    ap.add_argument(
        "--output",
        type=str,
        default=defaults.output,
        help="Write fused poses as JSON lines to this path (empty=off).",
    )
    ap.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default=defaults.log_level,
        help="Global log level.",
    )
    ap.add_argument(
        "--display-hz",
        type=float,
        default=defaults.display_hz,
        help="Live pose display refresh rate in Hz (0 disables).",
    )
    ap.add_argument(
        "--cli-output",
        choices=["live", "scroll"],
        default=defaults.cli_output,
        help="TUI output mode: in-place live panel or scrolling logs.",
    )

    fusion = ap.add_argument_group("fusion")
    fusion.add_argument(
        "--required-samples",
        type=int,
        default=defaults.required_samples,
        help="Camera pose samples to average before fusion starts.",
    )
    fusion.add_argument(
        "--initial-state-error",
        type=float,
        nargs=STATE_DIM,
        default=defaults.initial_state_error,
        metavar="VAR",
        help="Initial error covariance diagonal (position, velocity, orientation, angular velocity).",
    )
    fusion.add_argument(
        "--imu-error",
        type=float,
        nargs=3,
        default=defaults.imu_error,
        metavar="VAR",
        help="IMU orientation variance about x y z (rad^2).",
    )
    fusion.add_argument(
        "--camera-position-error",
        type=float,
        nargs=3,
        default=defaults.camera_position_error,
        metavar="VAR",
        help="Video tracker position variance x y z (m^2).",
    )
    fusion.add_argument(
        "--camera-orientation-error",
        type=float,
        nargs=3,
        default=defaults.camera_orientation_error,
        metavar="VAR",
        help="Video tracker orientation variance about x y z (rad^2).",
    )
    fusion.add_argument(
        "--process-noise-scale",
        type=float,
        default=defaults.process_noise_scale,
        help="Factor applied once to the process noise autocorrelation.",
    )
    fusion.add_argument(
        "--damping",
        type=float,
        default=defaults.damping,
        help="Fraction of velocity surviving one second, in (0,1).",
    )
    fusion.add_argument(
        "--noise-autocorrelation",
        type=float,
        nargs=6,
        default=defaults.noise_autocorrelation,
        metavar="MU",
        help="Process noise densities: translation x y z, rotation x y z.",
    )
    fusion.add_argument(
        "--euro-min-cutoff",
        type=float,
        default=defaults.euro_min_cutoff,
        help="Calibration smoothing minimum cutoff (Hz).",
    )
    fusion.add_argument(
        "--euro-beta",
        type=float,
        default=defaults.euro_beta,
        help="Calibration smoothing speed coefficient.",
    )
    fusion.add_argument(
        "--euro-derivative-cutoff",
        type=float,
        default=defaults.euro_derivative_cutoff,
        help="Calibration smoothing derivative cutoff (Hz).",
    )
    fusion.add_argument(
        "--calibration-timeout-s",
        type=float,
        default=defaults.calibration_timeout_s,
        help="Restart camera pose acquisition after this many seconds (0=never).",
    )
    fusion.add_argument(
        "--calibration-max-angular-speed",
        type=float,
        default=defaults.calibration_max_angular_speed,
        help="Reject calibration samples while rotating faster than this (rad/s, 0=off).",
    )

    synth = ap.add_argument_group("synthetic source")
    synth.add_argument("--synth-duration-s", type=float, default=defaults.synth_duration_s)
    synth.add_argument("--synth-imu-hz", type=float, default=defaults.synth_imu_hz)
    synth.add_argument("--synth-video-hz", type=float, default=defaults.synth_video_hz)
    synth.add_argument(
        "--synth-camera-position",
        type=float,
        nargs=3,
        default=defaults.synth_camera_position,
        metavar="M",
        help="Simulated camera position in the room (m).",
    )
    synth.add_argument(
        "--synth-camera-yaw-deg",
        type=float,
        default=defaults.synth_camera_yaw_deg,
        help="Simulated camera yaw in the room (deg).",
    )
    synth.add_argument(
        "--synth-yaw-rate-deg",
        type=float,
        default=defaults.synth_yaw_rate_deg,
        help="Simulated device yaw rate (deg/s).",
    )
    synth.add_argument(
        "--synth-position-noise",
        type=float,
        default=defaults.synth_position_noise,
        help="Video position noise std-dev (m).",
    )
    synth.add_argument(
        "--synth-orientation-noise",
        type=float,
        default=defaults.synth_orientation_noise,
        help="Orientation noise std-dev (rad).",
    )
    synth.add_argument("--synth-seed", type=int, default=defaults.synth_seed)

    return ap


def _require_positive(values, flag: str) -> None:
    if not all(math.isfinite(v) and v > 0.0 for v in values):
        raise ValueError(f"{flag} values must be finite and > 0, got {list(values)}")


def validate_config(cfg: FusionConfig) -> None:
    if cfg.source not in {"synthetic", "replay"}:
        raise ValueError(f"--source must be one of synthetic|replay, got {cfg.source}")
    if cfg.source == "replay" and not cfg.reports.strip():
        raise ValueError("--reports must be provided with --source replay")
    if cfg.display_hz < 0.0:
        raise ValueError(f"--display-hz must be >= 0, got {cfg.display_hz}")
    if cfg.cli_output not in {"live", "scroll"}:
        raise ValueError(f"--cli-output must be live|scroll, got {cfg.cli_output}")
    if cfg.required_samples < 1:
        raise ValueError(f"--required-samples must be >= 1, got {cfg.required_samples}")
    for key, size in _VECTOR_FIELDS.items():
        if len(getattr(cfg, key)) != size:
            flag = "--" + key.replace("_", "-")
            raise ValueError(f"{flag} expects {size} values, got {len(getattr(cfg, key))}")
    _require_positive(cfg.initial_state_error, "--initial-state-error")
    _require_positive(cfg.imu_error, "--imu-error")
    _require_positive(cfg.camera_position_error, "--camera-position-error")
    _require_positive(cfg.camera_orientation_error, "--camera-orientation-error")
    if not all(math.isfinite(v) and v >= 0.0 for v in cfg.noise_autocorrelation):
        raise ValueError("--noise-autocorrelation values must be finite and >= 0")
    if not (cfg.process_noise_scale > 0.0):
        raise ValueError(
            f"--process-noise-scale must be > 0, got {cfg.process_noise_scale}"
        )
    if not (0.0 < cfg.damping < 1.0):
        raise ValueError(f"--damping must be in (0,1), got {cfg.damping}")
    if cfg.euro_min_cutoff <= 0.0:
        raise ValueError(f"--euro-min-cutoff must be > 0, got {cfg.euro_min_cutoff}")
    if cfg.euro_beta < 0.0:
        raise ValueError(f"--euro-beta must be >= 0, got {cfg.euro_beta}")
    if cfg.euro_derivative_cutoff <= 0.0:
        raise ValueError(
            f"--euro-derivative-cutoff must be > 0, got {cfg.euro_derivative_cutoff}"
        )
    if cfg.calibration_timeout_s < 0.0:
        raise ValueError(
            f"--calibration-timeout-s must be >= 0, got {cfg.calibration_timeout_s}"
        )
    if cfg.calibration_max_angular_speed < 0.0:
        raise ValueError(
            "--calibration-max-angular-speed must be >= 0, "
            f"got {cfg.calibration_max_angular_speed}"
        )
    if cfg.synth_duration_s <= 0.0:
        raise ValueError(f"--synth-duration-s must be > 0, got {cfg.synth_duration_s}")
    if cfg.synth_imu_hz <= 0.0 or cfg.synth_video_hz <= 0.0:
        raise ValueError("--synth-imu-hz/--synth-video-hz must be > 0")
    if cfg.synth_position_noise < 0.0 or cfg.synth_orientation_noise < 0.0:
        raise ValueError("--synth-position-noise/--synth-orientation-noise must be >= 0")
    if not all(math.isfinite(v) for v in cfg.synth_camera_position):
        raise ValueError("--synth-camera-position must be finite numbers")


def parse_args(argv=None) -> FusionConfig:
    bootstrap = argparse.ArgumentParser(add_help=False)
    bootstrap.add_argument("--config", type=str, default="")
    bootstrap_ns, _ = bootstrap.parse_known_args(argv)

    yaml_cfg: dict[str, Any] = {}
    yaml_error: Optional[str] = None
    if bootstrap_ns.config:
        try:
            yaml_cfg = _load_yaml_config(bootstrap_ns.config)
        except ValueError as exc:
            yaml_error = str(exc)

    ap = build_arg_parser()
    if yaml_error is not None:
        ap.error(yaml_error)
    if yaml_cfg:
        ap.set_defaults(**yaml_cfg)
    args = ap.parse_args(argv)

    values = {}
    for name in _CONFIG_FIELDS:
        value = getattr(args, name)
        values[name] = tuple(float(v) for v in value) if name in _VECTOR_FIELDS else value
    cfg = FusionConfig(**values)
    try:
        validate_config(cfg)
    except ValueError as exc:
        ap.error(str(exc))
    return cfg
