"""Tests for the queue worker base and shutdown signal."""

import queue
import time

from voice_gate.core.shutdown import GracefulShutdown
from voice_gate.core.worker import QueueWorker


class Collector(QueueWorker[int]):
    def __init__(self, stop_signal, input_queue):
        super().__init__(name="Collector", stop_signal=stop_signal, input_queue=input_queue, poll_interval_s=0.01)
        self.items = []
        self.errors = []

    def handle(self, item):
        if item < 0:
            raise ValueError(f"negative item {item}")
        self.items.append(item)

    def on_error(self, item, error):
        self.errors.append((item, str(error)))


class TestQueueWorker:
    def test_failed_item_does_not_stop_the_loop(self):
        q = queue.Queue()
        worker = Collector(GracefulShutdown(), q)
        worker.start()
        for item in (1, -2, 3):
            q.put(item)

        q.join()
        worker.stop()

        assert worker.items == [1, 3]
        assert worker.errors == [(-2, "negative item -2")]
        assert worker.items_handled == 2
        assert worker.items_failed == 1
        assert not worker.is_alive()

    def test_stop_before_start_is_safe(self):
        worker = Collector(GracefulShutdown(), queue.Queue())
        worker.stop()
        assert not worker.is_alive()


class TestGracefulShutdown:
    def test_first_reason_wins(self):
        signal = GracefulShutdown("test")
        signal.stop("first")
        signal.stop("second")
        assert signal.is_set()
        assert signal.reason == "first"

    def test_wait_times_out_until_stopped(self):
        signal = GracefulShutdown()
        started = time.monotonic()
        assert signal.wait(0.05) is False
        assert time.monotonic() - started >= 0.04
        signal.stop()
        assert signal.wait(0.05) is True
