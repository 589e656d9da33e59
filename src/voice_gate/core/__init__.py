"""Core primitives: lifecycle signals, worker threads, events and errors."""

from .errors import (
    AcquisitionError,
    AcquisitionFailure,
    DetectorInitError,
    GraphInitError,
    PipelineError,
    PublishError,
    RebuildError,
)
from .events import (
    EventChannel,
    PipelineState,
    PipelineStateChange,
    Subscription,
    VoiceState,
    VoiceTransition,
)
from .shutdown import GracefulShutdown, StopSignal
from .worker import QueueWorker

__all__ = [
    "AcquisitionError",
    "AcquisitionFailure",
    "DetectorInitError",
    "GraphInitError",
    "PipelineError",
    "PublishError",
    "RebuildError",
    "EventChannel",
    "PipelineState",
    "PipelineStateChange",
    "Subscription",
    "VoiceState",
    "VoiceTransition",
    "GracefulShutdown",
    "StopSignal",
    "QueueWorker",
]
