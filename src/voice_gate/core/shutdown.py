import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class GracefulShutdown:
    """One-shot stop flag shared between an owner and the threads it started."""

    def __init__(self, name: str = "shutdown"):
        self.name = name
        self.reason: Optional[str] = None
        self.stop_event = threading.Event()

    def stop(self, reason: Optional[str] = None):
        if self.stop_event.is_set():
            return
        self.reason = reason
        self.stop_event.set()
        logger.debug("%s signalled%s", self.name, f" ({reason})" if reason else "")

    def is_set(self):
        return self.stop_event.is_set()

    def wait(self, timeout=None):
        return self.stop_event.wait(timeout)


# Acquisition only reads the flag, as a cancel token.
StopSignal = GracefulShutdown
