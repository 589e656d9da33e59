"""Audio input: raw stream acquisition and frame types."""

from __future__ import annotations

from .acquisition import RawStream, StreamAcquirer, list_input_devices
from .types import (
    AcquisitionConstraints,
    AnalysisFrame,
    AudioFormat,
    AudioFrame,
    FrameConfig,
    StreamInfo,
)

__all__ = [
    "RawStream",
    "StreamAcquirer",
    "list_input_devices",
    "AcquisitionConstraints",
    "AnalysisFrame",
    "AudioFormat",
    "AudioFrame",
    "FrameConfig",
    "StreamInfo",
]
