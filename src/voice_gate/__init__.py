"""Voice-gated local microphone pipeline."""

from .config import PipelineConfig, load_config, setup_logging
from .core import (
    AcquisitionError,
    AcquisitionFailure,
    DetectorInitError,
    GraphInitError,
    PipelineError,
    PipelineState,
    PublishError,
    RebuildError,
    VoiceState,
)
from .gate import GateController
from .output import NotificationPlayer, OutputPublisher, ProcessedTrack, Transport
from .pipeline import MicPipeline, PipelineHandle
from .reconciler import SettingsReconciler

__all__ = [
    "PipelineConfig",
    "load_config",
    "setup_logging",
    "AcquisitionError",
    "AcquisitionFailure",
    "DetectorInitError",
    "GraphInitError",
    "PipelineError",
    "PipelineState",
    "PublishError",
    "RebuildError",
    "VoiceState",
    "GateController",
    "NotificationPlayer",
    "OutputPublisher",
    "ProcessedTrack",
    "Transport",
    "MicPipeline",
    "PipelineHandle",
    "SettingsReconciler",
]
