"""Detector interface shared by the heuristic and model strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..audio.input.types import AnalysisFrame
from ..config.settings import PipelineConfig
from ..core.events import EventChannel, VoiceState, VoiceTransition
from .hysteresis import HysteresisStateMachine


@dataclass(frozen=True)
class DetectionResult:
    probability: float
    is_speaking: bool
    volume: float = 0.0


class VoiceActivityDetector(ABC):
    """
    detect(frame) -> DetectionResult.

    Strategies differ only in how speech evidence is produced; every confirmed state
    change goes through the shared hysteresis machine and out on `transitions`.
    """

    strategy: str = "base"

    def __init__(self, config: PipelineConfig):
        self.machine = HysteresisStateMachine(
            positive_threshold=config.positive_threshold,
            negative_threshold=config.negative_threshold,
            min_speech_frames=config.min_speech_frames,
            min_silence_frames=config.min_silence_frames,
        )
        self.transitions: EventChannel[VoiceTransition] = EventChannel(f"{self.strategy}.transitions")
        self.last_probability = 0.0

    @property
    def state(self) -> VoiceState:
        return self.machine.state

    @property
    def is_speaking(self) -> bool:
        return self.machine.is_speaking

    @abstractmethod
    def detect(self, frame: AnalysisFrame) -> DetectionResult:
        ...

    def update_config(self, config: PipelineConfig) -> bool:
        """Apply live-appliable detector settings. Returns True if anything changed."""
        return self.machine.configure(
            config.positive_threshold,
            config.negative_threshold,
            config.min_speech_frames,
            config.min_silence_frames,
        )

    def _observe(self, probability: float) -> Optional[VoiceTransition]:
        self.last_probability = probability
        transition = self.machine.update(probability)
        if transition is not None:
            self.transitions.emit(transition)
        return transition

    def _force(self, state: VoiceState) -> Optional[VoiceTransition]:
        transition = self.machine.force(state)
        if transition is not None:
            self.transitions.emit(transition)
        return transition

    def reset(self) -> None:
        self.machine.reset()
        self.last_probability = 0.0

    def close(self) -> None:
        self.transitions.clear()

    def debug_info(self) -> dict:
        return {
            "strategy": self.strategy,
            "state": self.machine.state.name,
            "probability": self.last_probability,
            "speech_frame_count": self.machine.speech_frame_count,
            "silence_frame_count": self.machine.silence_frame_count,
            "frame_index": self.machine.frame_index,
            "positive_threshold": self.machine.positive_threshold,
            "negative_threshold": self.machine.negative_threshold,
            "min_speech_frames": self.machine.min_speech_frames,
            "min_silence_frames": self.machine.min_silence_frames,
        }
