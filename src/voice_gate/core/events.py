from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Generic, Optional, TypeVar
import itertools
import logging
import threading
import time

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VoiceState(Enum):
    SILENCE = auto()
    SPEECH = auto()


class PipelineState(Enum):
    """Lifecycle of the local microphone pipeline."""
    UNINITIALIZED = auto()
    ACQUIRING = auto()
    GRAPH_BUILT = auto()
    ACTIVE = auto()
    RECONFIGURING = auto()
    FAILED = auto()
    TORN_DOWN = auto()


@dataclass(frozen=True)
class VoiceTransition:
    """A hysteresis-confirmed change of voice state."""
    previous: VoiceState
    current: VoiceState
    frame_index: int
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class PipelineStateChange:
    previous: PipelineState
    current: PipelineState
    reason: Optional[str] = None


class Subscription:
    """
    Token returned by EventChannel.subscribe().

    Holding the token keeps nothing alive but the callback; callbacks are expected to
    read whatever state they need at delivery time instead of capturing it up front.
    """

    def __init__(self, channel: "EventChannel", token_id: int):
        self._channel = channel
        self.token_id = token_id

    @property
    def active(self) -> bool:
        return self._channel.has_subscriber(self.token_id)

    def unsubscribe(self) -> None:
        self._channel.remove(self.token_id)


class EventChannel(Generic[T]):
    """Small synchronous pub/sub channel. Delivery happens on the emitting thread."""

    def __init__(self, name: str):
        self.name = name
        self._callbacks: dict[int, Callable[[T], None]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        with self._lock:
            token_id = next(self._ids)
            self._callbacks[token_id] = callback
        return Subscription(self, token_id)

    def has_subscriber(self, token_id: int) -> bool:
        with self._lock:
            return token_id in self._callbacks

    def remove(self, token_id: int) -> None:
        with self._lock:
            self._callbacks.pop(token_id, None)

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()

    def emit(self, event: T) -> None:
        with self._lock:
            callbacks = list(self._callbacks.values())
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                # A broken listener must not stall the audio tick.
                logger.exception("Subscriber on %s channel failed", self.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)
