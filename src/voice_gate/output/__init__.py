"""Output side: track publication and notification cues."""

from .notifications import Cue, CueConfig, NotificationPlayer
from .publisher import OutputPublisher, ProcessedTrack, Transport

__all__ = [
    "Cue",
    "CueConfig",
    "NotificationPlayer",
    "OutputPublisher",
    "ProcessedTrack",
    "Transport",
]
