"""Queue-consuming worker threads."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Generic, Optional, TypeVar

from .shutdown import StopSignal

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueueWorker(threading.Thread, Generic[T]):
    """
    Thread that drains `input_queue` until `stop_signal` is set.

    Subclasses implement `handle(item)`. An exception from one item goes to
    `on_error()` and the loop carries on with the next item.
    """

    def __init__(
        self,
        *,
        name: str,
        stop_signal: StopSignal,
        input_queue: "queue.Queue[T]",
        poll_interval_s: float = 0.1,
        daemon: bool = True,
    ):
        super().__init__(name=name, daemon=daemon)
        self._stop_signal = stop_signal
        self._input_queue = input_queue
        self._poll_interval_s = poll_interval_s
        self.items_handled = 0
        self.items_failed = 0

    def run(self) -> None:
        while not self._stop_signal.is_set():
            try:
                item = self._input_queue.get(timeout=self._poll_interval_s)
            except queue.Empty:
                continue

            try:
                self.handle(item)
                self.items_handled += 1
            except Exception as e:
                self.items_failed += 1
                self.on_error(item, e)
            finally:
                self._input_queue.task_done()
        logger.debug("%s exiting (%d handled, %d failed)", self.name, self.items_handled, self.items_failed)

    def handle(self, item: T) -> None:
        raise NotImplementedError

    def on_error(self, item: T, error: Exception) -> None:
        logger.exception("%s failed to handle item", self.name)

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        """Signal the loop to finish and wait for it, unless called from the worker itself."""
        self._stop_signal.stop()
        if self.is_alive() and self is not threading.current_thread():
            self.join(timeout=timeout)
