"""Audio subsystem - capture, engine and conditioning graph."""

from .engine import AudioEngine, AudioParam, EngineState
from .graph import AudioGraph, ConditioningProfile, PARAM_RAMP_S, PROFILE_OFF, PROFILE_ON
from .input import (
    AcquisitionConstraints,
    AnalysisFrame,
    AudioFormat,
    AudioFrame,
    FrameConfig,
    RawStream,
    StreamAcquirer,
)

__all__ = [
    "AudioEngine",
    "AudioParam",
    "EngineState",
    "AudioGraph",
    "ConditioningProfile",
    "PARAM_RAMP_S",
    "PROFILE_OFF",
    "PROFILE_ON",
    "AcquisitionConstraints",
    "AnalysisFrame",
    "AudioFormat",
    "AudioFrame",
    "FrameConfig",
    "RawStream",
    "StreamAcquirer",
]
