"""Error taxonomy for the microphone pipeline."""

from __future__ import annotations

from enum import Enum, auto
from typing import Optional


class PipelineError(Exception):
    """Base class for every error surfaced by the pipeline."""


class AcquisitionFailure(Enum):
    PERMISSION_DENIED = auto()
    DEVICE_NOT_FOUND = auto()
    TIMEOUT = auto()
    CANCELLED = auto()
    DEVICE_ERROR = auto()


class AcquisitionError(PipelineError):
    """The hardware stream could not be opened."""

    def __init__(self, message: str, reason: AcquisitionFailure = AcquisitionFailure.DEVICE_ERROR,
                 device_id: Optional[object] = None):
        super().__init__(message)
        self.reason = reason
        self.device_id = device_id


class GraphInitError(PipelineError):
    """The processing graph could not be constructed."""


class DetectorInitError(PipelineError):
    """The voice detector failed to initialize. The pipeline fails open on this."""


class RebuildError(PipelineError):
    """A capture-level reconfiguration failed mid-flight."""

    def __init__(self, message: str, fatal: bool = False):
        super().__init__(message)
        self.fatal = fatal


class PublishError(PipelineError):
    """The transport rejected the processed track."""
