"""Video tracker + IMU pose fusion."""

from .control.controller import FusionParams, FusionPhase, VideoIMUFusion

__all__ = [
    "FusionParams",
    "FusionPhase",
    "VideoIMUFusion",
]
