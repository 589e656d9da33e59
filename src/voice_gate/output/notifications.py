"""Short synthesized notification cues, independent of the microphone pipeline."""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
import sounddevice as sd

from ..core.shutdown import GracefulShutdown
from ..core.worker import QueueWorker

logger = logging.getLogger(__name__)

# Short fade at start/end to avoid pops (ms). Used for fade-in and fade-out.
FADE_DURATION_MS = 5

CUE_SAMPLE_RATE = 44100
DEFAULT_GLOBAL_VOLUME = 0.7


class Cue(Enum):
    USER_JOIN = "user_join"
    USER_LEAVE = "user_leave"
    MESSAGE = "message"
    ERROR = "error"


@dataclass
class CueConfig:
    tones: tuple[tuple[float, float], ...]  # (frequency Hz, duration s)
    volume: float
    enabled: bool = True


def default_cues() -> dict[Cue, CueConfig]:
    return {
        Cue.USER_JOIN: CueConfig(tones=((660.0, 0.09), (880.0, 0.12)), volume=0.6),
        Cue.USER_LEAVE: CueConfig(tones=((880.0, 0.09), (660.0, 0.12)), volume=0.5),
        Cue.MESSAGE: CueConfig(tones=((1046.5, 0.08),), volume=0.7),
        Cue.ERROR: CueConfig(tones=((330.0, 0.12), (220.0, 0.2)), volume=0.8),
    }


def _apply_fade_in(frames: np.ndarray, n: int) -> None:
    """Apply linear fade-in to first n samples in-place. n may be 0."""
    if n <= 0 or len(frames) < n:
        return
    frames[:n] *= np.linspace(0.0, 1.0, n, dtype=np.float32)


def _apply_fade_out(frames: np.ndarray, n: int) -> None:
    """Apply linear fade-out to last n samples in-place. n may be 0."""
    if n <= 0 or len(frames) < n:
        return
    frames[-n:] *= np.linspace(1.0, 0.0, n, dtype=np.float32)


def synthesize(config: CueConfig, global_volume: float, sample_rate: int = CUE_SAMPLE_RATE) -> np.ndarray:
    n_fade = int(sample_rate * FADE_DURATION_MS / 1000)
    parts = []
    for frequency, duration_s in config.tones:
        t = np.arange(int(sample_rate * duration_s), dtype=np.float32) / sample_rate
        tone = np.sin(2 * np.pi * frequency * t).astype(np.float32)
        _apply_fade_in(tone, n_fade)
        _apply_fade_out(tone, n_fade)
        parts.append(tone)
    if not parts:
        return np.zeros(0, dtype=np.float32)
    pcm = np.concatenate(parts) * (config.volume * global_volume)
    return np.clip(pcm, -1.0, 1.0).astype(np.float32)


class _CueWorker(QueueWorker[np.ndarray]):
    def __init__(self, *, stop_signal: GracefulShutdown, input_queue: "queue.Queue[np.ndarray]",
                 stream: sd.OutputStream):
        super().__init__(name="NotificationThread", stop_signal=stop_signal, input_queue=input_queue)
        self._stream = stream

    def handle(self, item: np.ndarray) -> None:
        self._stream.write(item.reshape(-1, 1))

    def on_error(self, item: np.ndarray, error: Exception) -> None:
        logger.warning("Error playing notification cue: %s", error)


class NotificationPlayer:
    """
    Plays notification cues on the default output device.

    Owned by the application, not the pipeline: init() and close() are explicit, and
    play() before init() or after close() is a logged no-op.
    """

    def __init__(self, global_volume: float = DEFAULT_GLOBAL_VOLUME, enabled: bool = True,
                 cues: Optional[dict[Cue, CueConfig]] = None, device: Optional[int] = None):
        self.global_volume = global_volume
        self.enabled = enabled
        self.cues = cues if cues is not None else default_cues()
        self.device = device
        self._stream: Optional[sd.OutputStream] = None
        self._queue: "queue.Queue[np.ndarray]" = queue.Queue(maxsize=8)
        self._shutdown: Optional[GracefulShutdown] = None
        self._worker: Optional[_CueWorker] = None
        self._rendered: dict[Cue, np.ndarray] = {}

    @property
    def initialized(self) -> bool:
        return self._stream is not None

    def init(self) -> bool:
        if self.initialized:
            return True
        try:
            stream = sd.OutputStream(samplerate=CUE_SAMPLE_RATE, channels=1, dtype="float32", device=self.device)
            stream.start()
        except Exception as e:
            logger.warning("Notification output unavailable: %s", e)
            return False

        self._stream = stream
        self._rendered = {cue: synthesize(cfg, self.global_volume) for cue, cfg in self.cues.items()}
        self._shutdown = GracefulShutdown("notifications")
        self._worker = _CueWorker(stop_signal=self._shutdown, input_queue=self._queue, stream=stream)
        self._worker.start()
        logger.info("Notification player ready (%d cues)", len(self._rendered))
        return True

    def set_volume(self, volume: float) -> None:
        self.global_volume = float(min(max(volume, 0.0), 1.0))
        self._rendered = {cue: synthesize(cfg, self.global_volume) for cue, cfg in self.cues.items()}

    def set_enabled(self, cue: Cue, enabled: bool) -> None:
        self.cues[cue].enabled = enabled

    def play(self, cue: Cue) -> bool:
        """Queue `cue` for playback. Returns True if it was queued."""
        if not self.initialized:
            logger.debug("Notification %s ignored: player not initialized", cue.value)
            return False
        if not self.enabled or not self.cues[cue].enabled:
            return False
        try:
            self._queue.put_nowait(self._rendered[cue])
        except queue.Full:
            logger.debug("Notification %s dropped: queue full", cue.value)
            return False
        return True

    def close(self) -> None:
        if self._worker is not None:
            self._worker.stop()
        stream, self._stream = self._stream, None
        self._worker = None
        self._shutdown = None
        if stream is None:
            return
        try:
            if stream.active:
                stream.stop()
            stream.close()
        except Exception as e:
            logger.warning("Error closing notification stream: %s", e)
        logger.info("Notification player closed")
