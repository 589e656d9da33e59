"""Frame-counting hysteresis shared by every detection strategy."""

from __future__ import annotations

import logging
from typing import Optional

from ..core.events import VoiceState, VoiceTransition

logger = logging.getLogger(__name__)


class HysteresisStateMachine:
    """
    Converts per-frame speech probabilities into a stable Silence/Speech state.

    Silence -> Speech needs `min_speech_frames` consecutive frames at/above the positive
    threshold; Speech -> Silence needs `min_silence_frames` consecutive frames at/below the
    negative threshold. A frame between the two thresholds breaks both runs.
    """

    def __init__(
        self,
        positive_threshold: float,
        negative_threshold: float,
        min_speech_frames: int,
        min_silence_frames: int,
    ):
        self.positive_threshold = positive_threshold
        self.negative_threshold = negative_threshold
        self.min_speech_frames = min_speech_frames
        self.min_silence_frames = min_silence_frames
        self.reset()

    def reset(self) -> None:
        self.state = VoiceState.SILENCE
        self.speech_frame_count = 0
        self.silence_frame_count = 0
        self.frame_index = 0

    def configure(
        self,
        positive_threshold: float,
        negative_threshold: float,
        min_speech_frames: int,
        min_silence_frames: int,
    ) -> bool:
        """Update thresholds in place. Returns True if anything changed."""
        new = (positive_threshold, negative_threshold, min_speech_frames, min_silence_frames)
        old = (self.positive_threshold, self.negative_threshold, self.min_speech_frames, self.min_silence_frames)
        if new == old:
            return False
        (self.positive_threshold, self.negative_threshold,
         self.min_speech_frames, self.min_silence_frames) = new
        logger.debug("Hysteresis reconfigured: +%.2f/-%.2f, %d/%d frames", *new)
        return True

    @property
    def is_speaking(self) -> bool:
        return self.state is VoiceState.SPEECH

    def update(self, probability: float) -> Optional[VoiceTransition]:
        self.frame_index += 1

        if probability >= self.positive_threshold:
            self.speech_frame_count += 1
            self.silence_frame_count = 0
            if self.state is VoiceState.SILENCE and self.speech_frame_count >= self.min_speech_frames:
                return self._transition(VoiceState.SPEECH)
        elif probability <= self.negative_threshold:
            self.silence_frame_count += 1
            self.speech_frame_count = 0
            if self.state is VoiceState.SPEECH and self.silence_frame_count >= self.min_silence_frames:
                return self._transition(VoiceState.SILENCE)
        else:
            self.speech_frame_count = 0
            self.silence_frame_count = 0
        return None

    def force(self, state: VoiceState) -> Optional[VoiceTransition]:
        """Apply an externally decided state (callback-driven strategies)."""
        self.speech_frame_count = 0
        self.silence_frame_count = 0
        if state is self.state:
            return None
        return self._transition(state)

    def _transition(self, state: VoiceState) -> VoiceTransition:
        transition = VoiceTransition(previous=self.state, current=state, frame_index=self.frame_index)
        self.state = state
        logger.debug("Voice %s -> %s at frame %d", transition.previous.name, state.name, self.frame_index)
        return transition
