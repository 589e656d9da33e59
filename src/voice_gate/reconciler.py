"""
Settings reconciler.

Decides whether a config change can be applied to the running graph in place or needs
the stream, graph and detector rebuilt as one unit, and serializes the rebuilds.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Optional

from .config.settings import PipelineConfig
from .core.errors import RebuildError

logger = logging.getLogger(__name__)

LIVE_KEYS = frozenset({
    "noise_suppression",
    "auto_gain_control",
    "vad_enabled",
    "vad_strategy",
    "positive_threshold",
    "negative_threshold",
    "min_speech_frames",
    "min_silence_frames",
    "smoothing_factor",
})

CAPTURE_KEYS = frozenset({
    "echo_cancellation",
    "device_id",
    "sample_rate",
    "channel_count",
    "frame_ms",
})


@dataclass(frozen=True)
class ChangeSet:
    live: frozenset = frozenset()
    capture: frozenset = frozenset()
    other: frozenset = frozenset()

    @property
    def requires_rebuild(self) -> bool:
        return bool(self.capture)

    @property
    def empty(self) -> bool:
        return not (self.live or self.capture or self.other)

    def __bool__(self) -> bool:
        return not self.empty


def classify(old: PipelineConfig, new: PipelineConfig) -> ChangeSet:
    before = old.model_dump()
    after = new.model_dump()
    changed = {key for key, value in after.items() if before.get(key) != value}
    return ChangeSet(
        live=frozenset(changed & LIVE_KEYS),
        capture=frozenset(changed & CAPTURE_KEYS),
        other=frozenset(changed - LIVE_KEYS - CAPTURE_KEYS),
    )


class SettingsReconciler:
    """
    Applies config requests in order, one rebuild at a time.

    apply_live(config, changes) mutates the running handle; rebuild(config) tears it down
    and builds a new one, raising on failure. on_rebuild_failed(error) is told about every
    failed rebuild after the rollback attempt; error.fatal says whether the rollback failed too.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        apply_live: Callable[[PipelineConfig, ChangeSet], None],
        rebuild: Callable[[PipelineConfig], None],
        on_rebuild_failed: Callable[[RebuildError], None],
        debounce_s: Optional[float] = None,
    ):
        self.config = config
        self.last_good = config
        self._apply_live = apply_live
        self._rebuild = rebuild
        self._on_rebuild_failed = on_rebuild_failed
        self._debounce_s = config.rebuild_debounce_s if debounce_s is None else debounce_s

        self._cond = threading.Condition()
        self._pending: Optional[PipelineConfig] = None
        self._pending_future: Optional[Future] = None
        self._last_request_at = 0.0
        self._in_flight = False
        self._thread: Optional[threading.Thread] = None
        self._closed = False

        self.rebuilds_started = 0
        self.rebuilds_completed = 0

    @property
    def busy(self) -> bool:
        with self._cond:
            return self._busy()

    def _busy(self) -> bool:
        return self._in_flight or self._pending is not None

    def reconfigure(self, config: PipelineConfig) -> "Future[ChangeSet]":
        with self._cond:
            if self._closed:
                future: Future = Future()
                future.set_exception(RebuildError("Pipeline is shut down"))
                return future

            changes = None
            if not self._busy():
                changes = classify(self.config, config)
                if changes.requires_rebuild:
                    changes = None
                else:
                    # Claim the slot; the callback runs without holding the condition.
                    self._in_flight = True

            if changes is None:
                return self._queue(config)

        try:
            return self._apply_now(config, changes)
        finally:
            with self._cond:
                self._in_flight = False
                self._cond.notify_all()

    def _queue(self, config: PipelineConfig) -> "Future[ChangeSet]":
        # Caller holds the condition.
        self._pending = config
        self._last_request_at = time.monotonic()
        if self._pending_future is None:
            self._pending_future = Future()
        else:
            logger.debug("Coalescing reconfiguration request (latest wins)")
        future = self._pending_future

        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name="RebuildThread", daemon=True)
            self._thread.start()
        self._cond.notify_all()
        return future

    def _apply_now(self, config: PipelineConfig, changes: ChangeSet) -> "Future[ChangeSet]":
        future: Future = Future()
        try:
            if changes:
                self._apply_live(config, changes)
        except Exception as e:
            logger.error(f"Failed to apply live settings: {e}")
            future.set_exception(e)
            return future
        self.config = config
        self.last_good = config
        future.set_result(changes)
        return future

    def _run(self) -> None:
        while True:
            with self._cond:
                while True:
                    if self._closed or self._pending is None:
                        self._thread = None
                        return
                    if self._in_flight:
                        self._cond.wait()
                        continue
                    remaining = self._last_request_at + self._debounce_s - time.monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)
                config, future = self._pending, self._pending_future
                self._pending = None
                self._pending_future = None
                self._in_flight = True

            try:
                if future.set_running_or_notify_cancel():
                    try:
                        future.set_result(self._execute(config))
                    except Exception as e:
                        future.set_exception(e)
            finally:
                with self._cond:
                    self._in_flight = False
                    self._cond.notify_all()

    def _execute(self, config: PipelineConfig) -> ChangeSet:
        changes = classify(self.config, config)
        if not changes.requires_rebuild:
            if changes:
                self._apply_live(config, changes)
            self.config = config
            self.last_good = config
            return changes

        self.rebuilds_started += 1
        logger.info("Rebuilding pipeline for %s", ", ".join(sorted(changes.capture)))
        try:
            self._rebuild(config)
        except Exception as e:
            if self._closed:
                raise RebuildError("Rebuild abandoned: pipeline shut down") from e
            logger.error(f"Rebuild failed: {e}")
            self._rollback(e)

        self.config = config
        self.last_good = config
        self.rebuilds_completed += 1
        return changes

    def _rollback(self, cause: Exception) -> None:
        good = self.last_good
        try:
            self._rebuild(good)
        except Exception as e:
            logger.error(f"Rollback to last good settings failed: {e}")
            self.config = good
            error = RebuildError(f"Rebuild failed ({cause}) and previous settings could not be restored ({e})",
                                 fatal=True)
            self._on_rebuild_failed(error)
            raise error from e

        self.config = good
        logger.warning("Restored last good settings after failed rebuild")
        error = RebuildError(f"Rebuild failed, previous settings restored: {cause}", fatal=False)
        self._on_rebuild_failed(error)
        raise error from cause

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no rebuild is pending or in flight."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._busy():
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True

    def close(self) -> None:
        """Drop any queued request. A rebuild already running is left to notice the shutdown."""
        with self._cond:
            self._closed = True
            future, self._pending_future = self._pending_future, None
            self._pending = None
            self._cond.notify_all()
        if future is not None:
            future.cancel()
