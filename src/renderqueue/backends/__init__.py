"""Render backends wrapping external media tools."""

from .base import ProgressCallback, RenderBackend, staging_path
from .ffmpeg import (
    AudioExtractionBackend,
    EncoderSettings,
    FrameExtractionBackend,
    FilterUpscaleBackend,
    ReassemblyBackend,
)
from .melt import MeltBackend, MeltSettings, apply_track_selection
from .realesrgan import RealCuganBackend, RealEsrganBackend
from .rife import RifeBackend, RifeSettings

__all__ = [
    "ProgressCallback",
    "RenderBackend",
    "staging_path",
    "AudioExtractionBackend",
    "EncoderSettings",
    "FrameExtractionBackend",
    "FilterUpscaleBackend",
    "ReassemblyBackend",
    "MeltBackend",
    "MeltSettings",
    "apply_track_selection",
    "RealCuganBackend",
    "RealEsrganBackend",
    "RifeBackend",
    "RifeSettings",
]
