"""Audio input data types and configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np


@dataclass(frozen=True)
class AudioFormat:
    """Audio format specification."""
    sample_rate: int = 48000
    channels: int = 1
    dtype: str = "float32"  # sounddevice dtype name


@dataclass(frozen=True)
class FrameConfig:
    """Frame-level audio processing configuration."""
    frame_ms: int = 30
    max_frames_queue: int = 200

    def frame_size(self, sample_rate: int) -> int:
        return int(sample_rate * self.frame_ms / 1000)


@dataclass(frozen=True)
class AcquisitionConstraints:
    """
    What the caller asks of the capture device.

    Native processing is off by default so the graph is the only conditioning stage;
    echo cancellation is the one native feature that may be requested.
    """
    audio_format: AudioFormat = AudioFormat()
    frame: FrameConfig = FrameConfig()
    echo_cancellation: bool = False
    noise_suppression: bool = False
    auto_gain_control: bool = False


@dataclass
class AudioFrame:
    """Single block of captured audio."""
    pcm: np.ndarray          # shape: (n_samples,) float32 mono, or (n_samples, channels)
    sample_rate: int
    timestamp_s: float
    generation: int = 0      # stream generation that produced this frame


@dataclass
class AnalysisFrame:
    """Time-domain samples plus the derived, analyser-style frequency buffer."""
    time_domain: np.ndarray
    frequency_domain: np.ndarray   # normalized magnitudes in [0, 1], one per rfft bin
    sample_rate: int
    timestamp_s: float = 0.0
    index: int = 0

    @property
    def bin_hz(self) -> float:
        if len(self.frequency_domain) <= 1:
            return float(self.sample_rate) / 2
        return (self.sample_rate / 2) / (len(self.frequency_domain) - 1)


DeviceId = Optional[Union[int, str]]


@dataclass
class StreamInfo:
    """Description of an opened hardware stream."""
    device_id: DeviceId
    device_name: str
    sample_rate: int
    channels: int
    applied: dict = field(default_factory=dict)
