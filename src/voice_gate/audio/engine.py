"""
Audio engine context and parameter automation.

The engine keeps a sample clock that only advances when a block is rendered, so every
ramp is scheduled in audio time rather than wall-clock time. Parameter writes never
step: they become linear ramps from the instantaneous value. While the engine is not
running, writes only record the target; resume() turns pending targets into ramps.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum, auto
from typing import NamedTuple, Optional

import numpy as np

logger = logging.getLogger(__name__)


class EngineState(Enum):
    SUSPENDED = auto()
    RUNNING = auto()
    CLOSED = auto()


class _Ramp(NamedTuple):
    start_time: float
    start_value: float
    end_time: float
    end_value: float


class AudioParam:
    """A clamped, automatable node parameter."""

    def __init__(
        self,
        engine: "AudioEngine",
        name: str,
        value: float,
        min_value: float = -np.inf,
        max_value: float = np.inf,
    ):
        self._engine = engine
        self.name = name
        self.min_value = min_value
        self.max_value = max_value
        initial = self._clamp(value)
        # Swapped as a whole so the render thread never reads a torn ramp.
        self._ramp = _Ramp(0.0, initial, 0.0, initial)
        self._pending: Optional[tuple[float, float]] = None
        self.ramp_count = 0

    def _clamp(self, value: float) -> float:
        return float(min(max(value, self.min_value), self.max_value))

    def value_at(self, t: float) -> float:
        ramp = self._ramp
        if t >= ramp.end_time:
            return ramp.end_value
        if t <= ramp.start_time:
            return ramp.start_value
        frac = (t - ramp.start_time) / (ramp.end_time - ramp.start_time)
        return ramp.start_value + (ramp.end_value - ramp.start_value) * frac

    @property
    def value(self) -> float:
        return self.value_at(self._engine.current_time)

    @property
    def target(self) -> float:
        if self._pending is not None:
            return self._pending[0]
        return self._ramp.end_value

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def is_ramping(self) -> bool:
        return self._engine.current_time < self._ramp.end_time

    def set_target(self, value: float, ramp_s: float) -> bool:
        """
        Ramp toward `value` over `ramp_s` seconds of audio time.

        Returns True if a ramp was scheduled, False if the write was a no-op or was
        deferred because the engine is not running.
        """
        value = self._clamp(value)
        if not self._engine.running:
            if self._pending is None and value == self._ramp.end_value:
                return False
            self._pending = (value, ramp_s)
            self._engine.note_deferred_write(self.name)
            return False

        if value == self._ramp.end_value:
            return False

        now = self._engine.current_time
        start_value = self.value_at(now)
        self._ramp = _Ramp(now, start_value, now + max(ramp_s, 0.0), value)
        self.ramp_count += 1
        logger.debug("%s: %.4f -> %.4f over %.0f ms", self.name, start_value, value, ramp_s * 1000)
        return True

    def apply_pending(self) -> bool:
        pending, self._pending = self._pending, None
        if pending is None:
            return False
        return self.set_target(*pending)

    def render(self, n: int) -> np.ndarray:
        """Per-sample values for the next `n` samples (a-rate)."""
        ramp = self._ramp
        now = self._engine.current_time
        if now >= ramp.end_time:
            return np.full(n, ramp.end_value, dtype=np.float32)
        t = now + np.arange(n, dtype=np.float64) / self._engine.sample_rate
        values = np.interp(
            t,
            [ramp.start_time, ramp.end_time],
            [ramp.start_value, ramp.end_value],
        )
        return values.astype(np.float32)


class AudioEngine:
    """Rendering context shared by every node of one pipeline handle."""

    def __init__(self, sample_rate: int):
        self.sample_rate = sample_rate
        self._state = EngineState.SUSPENDED
        self._frames_rendered = 0
        self._params: list[AudioParam] = []
        self._lock = threading.Lock()
        self._warned_deferred = False

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is EngineState.RUNNING

    @property
    def current_time(self) -> float:
        return self._frames_rendered / self.sample_rate

    def create_param(self, name: str, value: float, min_value: float = -np.inf,
                     max_value: float = np.inf) -> AudioParam:
        param = AudioParam(self, name, value, min_value, max_value)
        with self._lock:
            self._params.append(param)
        return param

    def note_deferred_write(self, name: str) -> None:
        if not self._warned_deferred:
            logger.warning("Audio engine is %s; deferring %s until resume", self._state.name.lower(), name)
            self._warned_deferred = True

    def resume(self) -> bool:
        """Start rendering and re-apply any writes made while suspended."""
        if self._state is not EngineState.SUSPENDED:
            return self._state is EngineState.RUNNING
        self._state = EngineState.RUNNING
        self._warned_deferred = False
        with self._lock:
            params = list(self._params)
        reapplied = sum(1 for p in params if p.apply_pending())
        logger.info("Audio engine resumed (%d pending parameter writes applied)", reapplied)
        return True

    def suspend(self) -> None:
        if self._state is EngineState.RUNNING:
            self._state = EngineState.SUSPENDED
            logger.info("Audio engine suspended")

    def close(self) -> None:
        if self._state is EngineState.CLOSED:
            return
        self._state = EngineState.CLOSED
        with self._lock:
            self._params.clear()
        logger.debug("Audio engine closed")

    def advance(self, n_samples: int) -> None:
        self._frames_rendered += n_samples
