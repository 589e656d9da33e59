"""Hands the processed track to the external transport."""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from ..core.errors import PipelineError, PublishError

logger = logging.getLogger(__name__)

_track_ids = itertools.count(1)


class ProcessedTrack:
    """
    Bounded stream of processed mono blocks produced by one pipeline handle.

    Writers never block: when the consumer falls behind, the oldest block is dropped.
    """

    def __init__(self, sample_rate: int, max_blocks: int = 200):
        self.track_id = next(_track_ids)
        self.sample_rate = sample_rate
        self.queue: "queue.Queue[np.ndarray]" = queue.Queue(maxsize=max_blocks)
        self._ended = threading.Event()
        self.blocks_written = 0
        self.blocks_dropped = 0

    @property
    def ended(self) -> bool:
        return self._ended.is_set()

    def write(self, block: np.ndarray) -> None:
        if self.ended:
            return
        while True:
            try:
                self.queue.put_nowait(block)
                break
            except queue.Full:
                try:
                    self.queue.get_nowait()
                    self.queue.task_done()
                    self.blocks_dropped += 1
                except queue.Empty:
                    pass
        self.blocks_written += 1

    def read(self, timeout: Optional[float] = None) -> Optional[np.ndarray]:
        try:
            block = self.queue.get(timeout=timeout)
        except queue.Empty:
            return None
        self.queue.task_done()
        return block

    def end(self) -> None:
        if not self.ended:
            self._ended.set()
            logger.debug("Track %d ended after %d blocks", self.track_id, self.blocks_written)

    def __repr__(self) -> str:
        return f"ProcessedTrack(id={self.track_id}, sample_rate={self.sample_rate}, ended={self.ended})"


class Transport(ABC):
    """The conferencing transport as seen from the pipeline."""

    @abstractmethod
    def publish(self, track: ProcessedTrack) -> None:
        ...

    @abstractmethod
    def unpublish(self) -> None:
        ...

    def notify_error(self, error: PipelineError) -> None:
        logger.error("Pipeline error reported to transport: %s", error)


class OutputPublisher:
    """Single entry point for replacing the track the transport carries."""

    def __init__(self, transport: Transport):
        self.transport = transport
        self._track: Optional[ProcessedTrack] = None

    @property
    def track(self) -> Optional[ProcessedTrack]:
        return self._track

    @property
    def published(self) -> bool:
        return self._track is not None

    def replace_track(self, track: ProcessedTrack) -> None:
        """Publish `track` in place of the current one. Raises PublishError if rejected."""
        if track is self._track:
            return
        try:
            self.transport.publish(track)
        except Exception as e:
            raise PublishError(f"Transport rejected track {track.track_id}: {e}") from e

        previous, self._track = self._track, track
        if previous is not None:
            previous.end()
        logger.info("Published track %d (%d Hz)", track.track_id, track.sample_rate)

    def unpublish(self) -> None:
        track, self._track = self._track, None
        if track is None:
            return
        try:
            self.transport.unpublish()
        except Exception as e:
            raise PublishError(f"Transport failed to unpublish track {track.track_id}: {e}") from e
        finally:
            track.end()
        logger.info("Unpublished track %d", track.track_id)

    def notify_error(self, error: PipelineError) -> None:
        try:
            self.transport.notify_error(error)
        except Exception:
            logger.exception("Transport failed to accept error notification")
