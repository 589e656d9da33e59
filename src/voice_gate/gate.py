"""Gate controller: turns voice transitions into gain ramps on the gate node."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .audio.nodes import GateNode
from .core.events import EventChannel, Subscription, VoiceState, VoiceTransition
from .vad.base import VoiceActivityDetector

logger = logging.getLogger(__name__)

GATE_OPEN_GAIN = 1.0
# Non-zero so the closed gate never produces denormals or a hard click.
GATE_FLOOR_GAIN = 0.0001
OPEN_RAMP_S = 0.1
CLOSE_RAMP_S = 0.5


@dataclass(frozen=True)
class GateState:
    target_gain: float
    current_gain: float


class GateController:
    """
    Fast open, slow close.

    While held open (VAD disabled or the detector failed to start) transitions are
    ignored and the gate stays at unity gain.
    """

    def __init__(self, gate: GateNode, held_open: bool = False):
        self.node = gate
        self.changes: EventChannel[bool] = EventChannel("gate.changes")
        self._held_open = held_open
        self._open = held_open or gate.gain.target >= GATE_OPEN_GAIN
        self._subscription: Optional[Subscription] = None
        self._detector: Optional[VoiceActivityDetector] = None

    @staticmethod
    def initial_gain(held_open: bool) -> float:
        return GATE_OPEN_GAIN if held_open else GATE_FLOOR_GAIN

    @property
    def gate_open(self) -> bool:
        return self._open

    @property
    def held_open(self) -> bool:
        return self._held_open

    @property
    def state(self) -> GateState:
        return GateState(target_gain=self.node.gain.target, current_gain=self.node.gain.value)

    def attach(self, detector: VoiceActivityDetector) -> None:
        """Follow `detector`, replacing any previously attached one."""
        self.detach()
        self._detector = detector
        self._subscription = detector.transitions.subscribe(self._on_transition)

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
        self._subscription = None
        self._detector = None

    def _on_transition(self, transition: VoiceTransition) -> None:
        if self._held_open:
            return
        self._drive(transition.current is VoiceState.SPEECH)

    def _drive(self, open_: bool) -> None:
        if open_:
            self.node.gain.set_target(GATE_OPEN_GAIN, OPEN_RAMP_S)
        else:
            self.node.gain.set_target(GATE_FLOOR_GAIN, CLOSE_RAMP_S)

        if open_ != self._open:
            self._open = open_
            logger.debug("Gate %s", "opening" if open_ else "closing")
            self.changes.emit(open_)

    def hold_open(self, reason: str) -> None:
        if not self._held_open:
            logger.warning("Gate held open: %s", reason)
        self._held_open = True
        self._drive(True)

    def release(self) -> None:
        """Stop holding the gate open and follow the detector's current state again."""
        if not self._held_open:
            return
        self._held_open = False
        speaking = self._detector is not None and self._detector.is_speaking
        self._drive(speaking)

    def close(self) -> None:
        self.detach()
        self.changes.clear()
