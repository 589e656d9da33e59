"""Tests for change classification and rebuild serialization."""

import threading
import time
from concurrent.futures import CancelledError

import pytest

from voice_gate.config.settings import PipelineConfig
from voice_gate.core.errors import RebuildError
from voice_gate.reconciler import CAPTURE_KEYS, LIVE_KEYS, SettingsReconciler, classify


class Recorder:
    """Collects reconciler callbacks; rebuild can be slowed down or made to fail."""

    def __init__(self, fail_for=(), delay_s=0.0):
        self.fail_for = list(fail_for)
        self.delay_s = delay_s
        self.live = []
        self.rebuilds = []
        self.failures = []
        self.in_rebuild = 0
        self.max_concurrent = 0
        self.rebuild_started = threading.Event()
        self._lock = threading.Lock()

    def apply_live(self, config, changes):
        self.live.append((config, changes))

    def rebuild(self, config):
        with self._lock:
            self.in_rebuild += 1
            self.max_concurrent = max(self.max_concurrent, self.in_rebuild)
        self.rebuild_started.set()
        try:
            time.sleep(self.delay_s)
            self.rebuilds.append(config)
            if any(config == bad for bad in self.fail_for):
                raise RuntimeError(f"cannot build {config.sample_rate} Hz")
        finally:
            with self._lock:
                self.in_rebuild -= 1

    def on_failed(self, error):
        self.failures.append(error)


def make_reconciler(recorder, config=None, debounce_s=0.0):
    return SettingsReconciler(
        config or PipelineConfig(),
        apply_live=recorder.apply_live,
        rebuild=recorder.rebuild,
        on_rebuild_failed=recorder.on_failed,
        debounce_s=debounce_s,
    )


class TestClassify:
    def test_key_sets_are_disjoint(self):
        assert not LIVE_KEYS & CAPTURE_KEYS

    def test_identical_configs_have_no_changes(self):
        assert classify(PipelineConfig(), PipelineConfig()).empty

    @pytest.mark.parametrize("change", [
        {"noise_suppression": False},
        {"auto_gain_control": False},
        {"positive_threshold": 0.5},
        {"min_silence_frames": 20},
        {"vad_enabled": False},
    ])
    def test_live_changes(self, change):
        changes = classify(PipelineConfig(), PipelineConfig(**change))
        assert changes.live == frozenset(change)
        assert not changes.requires_rebuild

    @pytest.mark.parametrize("change", [
        {"echo_cancellation": True},
        {"device_id": 2},
        {"sample_rate": 16000},
        {"channel_count": 2},
    ])
    def test_capture_changes(self, change):
        changes = classify(PipelineConfig(), PipelineConfig(**change))
        assert changes.capture == frozenset(change)
        assert changes.requires_rebuild

    def test_other_keys_are_stored_only(self):
        changes = classify(PipelineConfig(), PipelineConfig(acquire_timeout_s=3.0))
        assert changes.other == {"acquire_timeout_s"}
        assert not changes.live and not changes.capture


class TestSettingsReconciler:
    def test_live_change_applies_immediately(self):
        recorder = Recorder()
        reconciler = make_reconciler(recorder)

        future = reconciler.reconfigure(PipelineConfig(noise_suppression=False))

        assert future.done()
        assert future.result().live == {"noise_suppression"}
        assert len(recorder.live) == 1
        assert recorder.rebuilds == []
        assert reconciler.config.noise_suppression is False

    def test_identical_config_is_noop(self):
        recorder = Recorder()
        reconciler = make_reconciler(recorder)

        future = reconciler.reconfigure(PipelineConfig())

        assert future.result().empty
        assert recorder.live == []
        assert recorder.rebuilds == []

    def test_capture_change_rebuilds(self):
        recorder = Recorder()
        reconciler = make_reconciler(recorder)
        target = PipelineConfig(echo_cancellation=True)

        changes = reconciler.reconfigure(target).result(timeout=2)

        assert changes.capture == {"echo_cancellation"}
        assert recorder.rebuilds == [target]
        assert reconciler.rebuilds_completed == 1
        assert reconciler.last_good == target

    def test_rapid_capture_changes_coalesce_to_latest(self):
        recorder = Recorder()
        reconciler = make_reconciler(recorder, debounce_s=0.1)
        first = PipelineConfig(sample_rate=16000)
        second = PipelineConfig(sample_rate=44100)

        f1 = reconciler.reconfigure(first)
        f2 = reconciler.reconfigure(second)
        f2.result(timeout=2)

        assert f1 is f2
        assert recorder.rebuilds == [second]
        assert reconciler.rebuilds_completed == 1

    def test_request_during_rebuild_runs_after_with_latest_config(self):
        recorder = Recorder(delay_s=0.2)
        reconciler = make_reconciler(recorder)
        first = PipelineConfig(sample_rate=16000)

        reconciler.reconfigure(first)
        assert recorder.rebuild_started.wait(1.0)
        reconciler.reconfigure(PipelineConfig(sample_rate=22050))
        last = reconciler.reconfigure(PipelineConfig(sample_rate=44100))
        last.result(timeout=3)

        assert [c.sample_rate for c in recorder.rebuilds] == [16000, 44100]
        assert recorder.max_concurrent == 1

    def test_live_change_queued_behind_rebuild(self):
        recorder = Recorder(delay_s=0.2)
        reconciler = make_reconciler(recorder)
        rebuilt = PipelineConfig(sample_rate=16000)

        reconciler.reconfigure(rebuilt)
        assert recorder.rebuild_started.wait(1.0)
        future = reconciler.reconfigure(rebuilt.updated(noise_suppression=False))
        assert not future.done()

        assert future.result(timeout=3).live == {"noise_suppression"}
        assert len(recorder.rebuilds) == 1
        assert reconciler.config.noise_suppression is False

    def test_failed_rebuild_rolls_back_to_last_good(self):
        bad = PipelineConfig(sample_rate=96000)
        recorder = Recorder(fail_for=[bad])
        reconciler = make_reconciler(recorder)

        future = reconciler.reconfigure(bad)
        with pytest.raises(RebuildError) as exc_info:
            future.result(timeout=2)

        assert exc_info.value.fatal is False
        assert recorder.rebuilds == [bad, PipelineConfig()]
        assert reconciler.config == PipelineConfig()
        assert len(recorder.failures) == 1

    def test_failed_rollback_is_fatal(self):
        bad = PipelineConfig(sample_rate=96000)
        recorder = Recorder(fail_for=[bad, PipelineConfig()])
        reconciler = make_reconciler(recorder)

        with pytest.raises(RebuildError) as exc_info:
            reconciler.reconfigure(bad).result(timeout=2)

        assert exc_info.value.fatal is True
        assert recorder.failures[0].fatal is True

    def test_close_cancels_queued_request(self):
        recorder = Recorder()
        reconciler = make_reconciler(recorder, debounce_s=1.0)

        future = reconciler.reconfigure(PipelineConfig(sample_rate=16000))
        reconciler.close()

        with pytest.raises(CancelledError):
            future.result(timeout=2)
        assert recorder.rebuilds == []

    def test_requests_after_close_fail(self):
        reconciler = make_reconciler(Recorder())
        reconciler.close()
        with pytest.raises(RebuildError):
            reconciler.reconfigure(PipelineConfig(sample_rate=16000)).result(timeout=1)

    def test_wait_idle(self):
        recorder = Recorder(delay_s=0.1)
        reconciler = make_reconciler(recorder)
        reconciler.reconfigure(PipelineConfig(sample_rate=16000))
        assert reconciler.wait_idle(timeout=2)
        assert not reconciler.busy

    def test_live_apply_runs_without_holding_the_reconciler_lock(self):
        reconciler = None
        observed = {}

        def apply_live(config, changes):
            reader = threading.Thread(target=lambda: observed.update(busy=reconciler.busy))
            reader.start()
            reader.join(timeout=1.0)
            observed["reader_finished"] = not reader.is_alive()

        reconciler = SettingsReconciler(
            PipelineConfig(),
            apply_live=apply_live,
            rebuild=lambda config: None,
            on_rebuild_failed=lambda error: None,
            debounce_s=0.0,
        )

        reconciler.reconfigure(PipelineConfig(noise_suppression=False)).result(timeout=2)

        assert observed == {"busy": True, "reader_finished": True}
        assert not reconciler.busy

    def test_request_during_live_apply_is_queued_behind_it(self):
        recorder = Recorder()
        reconciler = make_reconciler(recorder)
        order = []
        queued = {}

        def apply_live(config, changes):
            order.append(("live", config.noise_suppression))
            if not queued:
                queued["future"] = reconciler.reconfigure(config.updated(sample_rate=16000))
                assert not queued["future"].done()

        def rebuild(config):
            order.append(("rebuild", config.sample_rate))

        reconciler._apply_live = apply_live
        reconciler._rebuild = rebuild

        reconciler.reconfigure(PipelineConfig(noise_suppression=False)).result(timeout=2)
        queued["future"].result(timeout=2)

        assert order == [("live", False), ("rebuild", 16000)]
        assert reconciler.config.sample_rate == 16000
