"""Voice activity detection strategies sharing one hysteresis state machine."""

from __future__ import annotations

import logging

from ..config.settings import PipelineConfig
from ..core.errors import DetectorInitError
from .base import DetectionResult, VoiceActivityDetector
from .heuristic import HeuristicVAD
from .hysteresis import HysteresisStateMachine

logger = logging.getLogger(__name__)


def create_detector(config: PipelineConfig) -> VoiceActivityDetector:
    """Build the detector named by `config.vad_strategy` or raise DetectorInitError."""
    if config.vad_strategy == "heuristic":
        return HeuristicVAD(config)

    if config.vad_strategy == "model":
        # The model stack (torch, onnx) is only loaded when this strategy is chosen.
        try:
            from .model import ModelVAD
        except Exception as e:
            raise DetectorInitError(f"Speech model backend unavailable: {e}") from e
        return ModelVAD(config)

    raise DetectorInitError(f"Unknown VAD strategy: {config.vad_strategy!r}")


__all__ = [
    "DetectionResult",
    "HeuristicVAD",
    "HysteresisStateMachine",
    "VoiceActivityDetector",
    "create_detector",
]
