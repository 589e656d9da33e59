"""
Local microphone pipeline controller.

MicPipeline owns exactly one PipelineHandle at a time and moves through
Uninitialized -> Acquiring -> GraphBuilt -> Active <-> Reconfiguring -> (Active | Failed) -> TornDown.
Captured frames are processed on a single worker thread; handle swaps happen under one lock.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from functools import partial
from typing import Callable, Optional

from .audio.engine import AudioEngine
from .audio.graph import AudioGraph, ConditioningProfile
from .audio.input.acquisition import RawStream, StreamAcquirer
from .audio.input.types import AcquisitionConstraints, AudioFormat, AudioFrame, FrameConfig
from .config.settings import PipelineConfig
from .core.errors import DetectorInitError, PipelineError, PublishError, RebuildError
from .core.events import EventChannel, PipelineState, PipelineStateChange, VoiceTransition
from .core.shutdown import GracefulShutdown
from .core.worker import QueueWorker
from .gate import GateController
from .output.publisher import OutputPublisher, ProcessedTrack, Transport
from .reconciler import ChangeSet, SettingsReconciler
from .vad import create_detector
from .vad.base import DetectionResult, VoiceActivityDetector

logger = logging.getLogger(__name__)

DetectorFactory = Callable[[PipelineConfig], VoiceActivityDetector]

DETECTOR_KEYS = frozenset({
    "positive_threshold",
    "negative_threshold",
    "min_speech_frames",
    "min_silence_frames",
    "smoothing_factor",
})


def constraints_for(config: PipelineConfig) -> AcquisitionConstraints:
    # Native noise suppression and AGC stay off; the graph does that conditioning.
    return AcquisitionConstraints(
        audio_format=AudioFormat(sample_rate=config.sample_rate, channels=config.channel_count),
        frame=FrameConfig(frame_ms=config.frame_ms),
        echo_cancellation=config.echo_cancellation,
    )


class PipelineHandle:
    """
    Exclusive owner of one hardware stream, its engine, graph nodes and detector.

    close() is idempotent and safe on a handle whose build failed half way.
    """

    def __init__(
        self,
        config: PipelineConfig,
        stream: RawStream,
        detector_factory: DetectorFactory,
        voice_sink: Callable[[VoiceTransition], None],
        gate_sink: Callable[[bool], None],
        error_sink: Callable[[PipelineError], None],
    ):
        self.config = config
        self.stream = stream
        self.generation = stream.generation
        self._detector_factory = detector_factory
        self._voice_sink = voice_sink
        self._gate_sink = gate_sink
        self._error_sink = error_sink
        self.engine: Optional[AudioEngine] = None
        self.graph: Optional[AudioGraph] = None
        self.gate: Optional[GateController] = None
        self.detector: Optional[VoiceActivityDetector] = None
        self.detector_error: Optional[PipelineError] = None
        self.track: Optional[ProcessedTrack] = None
        self._closed = False

    def build(self) -> "PipelineHandle":
        """Construct engine, graph, gate and detector. Raises GraphInitError."""
        config = self.config
        detector = None
        try:
            self.engine = AudioEngine(config.sample_rate)
            detector = self._create_detector(config) if config.vad_enabled else None
            held_open = detector is None
            self.graph = AudioGraph(
                self.engine,
                ConditioningProfile.select(config.noise_suppression, config.auto_gain_control),
                gate_gain=GateController.initial_gain(held_open),
            )
            self.gate = GateController(self.graph.gate, held_open=held_open)
            self.gate.changes.subscribe(self._gate_sink)
            if detector is not None:
                self._attach_detector(detector)
            elif config.vad_enabled:
                self.gate.hold_open("voice detector unavailable")
            self.track = ProcessedTrack(config.sample_rate)
        except Exception:
            if detector is not None and self.detector is None:
                detector.close()
            self.close()
            raise
        return self

    def _create_detector(self, config: PipelineConfig) -> Optional[VoiceActivityDetector]:
        try:
            detector = self._detector_factory(config)
        except DetectorInitError as e:
            logger.warning(f"Voice detector failed to start, gate stays open: {e}")
            self.detector_error = e
            self._error_sink(e)
            return None
        self.detector_error = None
        return detector

    def _attach_detector(self, detector: VoiceActivityDetector) -> None:
        self.detector = detector
        detector.transitions.subscribe(self._voice_sink)
        self.gate.attach(detector)
        self.gate.release()

    def _drop_detector(self) -> None:
        detector, self.detector = self.detector, None
        if self.gate is not None:
            self.gate.detach()
        if detector is not None:
            detector.close()

    @property
    def active(self) -> bool:
        return not self._closed

    def resume(self) -> bool:
        return self.engine is not None and self.engine.resume()

    def apply_live(self, config: PipelineConfig, changes: ChangeSet) -> None:
        keys = changes.live
        if keys & {"noise_suppression", "auto_gain_control"}:
            self.graph.apply_profile(ConditioningProfile.select(config.noise_suppression, config.auto_gain_control))

        if keys & {"vad_enabled", "vad_strategy"}:
            self._drop_detector()
            if not config.vad_enabled:
                self.gate.hold_open("voice detection disabled")
            else:
                detector = self._create_detector(config)
                if detector is None:
                    self.gate.hold_open("voice detector unavailable")
                else:
                    self._attach_detector(detector)
        elif self.detector is not None and keys & DETECTOR_KEYS:
            self.detector.update_config(config)

        self.config = config

    def process(self, frame: AudioFrame) -> Optional[DetectionResult]:
        """One analysis tick: condition the block, run detection, feed the track."""
        block = self.graph.process(frame.pcm)
        if block is None:
            return None

        result = None
        analysis = self.graph.latest_analysis
        if self.detector is not None and analysis is not None:
            try:
                result = self.detector.detect(analysis)
            except Exception as e:
                logger.exception("Voice detector failed mid-stream, gate held open")
                self._drop_detector()
                self.detector_error = DetectorInitError(f"Voice detector failed: {e}")
                self.gate.hold_open("voice detector failed")
                self._error_sink(self.detector_error)

        self.track.write(block)
        return result

    def close(self) -> None:
        """Stop the stream, disconnect every node and discard detector state."""
        if self._closed:
            return
        self._closed = True
        self.stream.stop()
        self._drop_detector()
        if self.gate is not None:
            self.gate.close()
        if self.graph is not None:
            self.graph.disconnect()
        if self.engine is not None:
            self.engine.close()
        logger.debug("Pipeline handle (generation %d) closed", self.generation)

    def debug_info(self) -> dict:
        info = {
            "generation": self.generation,
            "device": self.stream.info.device_name,
            "sample_rate": self.stream.info.sample_rate,
            "channels": self.stream.info.channels,
            "applied_constraints": dict(self.stream.info.applied),
            "dropped_frames": self.stream.dropped_frames,
            "engine_state": self.engine.state.name if self.engine else None,
            "engine_time_s": self.engine.current_time if self.engine else 0.0,
        }
        if self.graph is not None:
            info["graph"] = self.graph.snapshot()
        if self.gate is not None:
            gate_state = self.gate.state
            info["gate"] = {
                "open": self.gate.gate_open,
                "held_open": self.gate.held_open,
                "target_gain": gate_state.target_gain,
                "current_gain": gate_state.current_gain,
            }
        info["vad"] = self.detector.debug_info() if self.detector is not None else None
        info["detector_error"] = str(self.detector_error) if self.detector_error else None
        if self.track is not None:
            info["track"] = {
                "id": self.track.track_id,
                "blocks_written": self.track.blocks_written,
                "blocks_dropped": self.track.blocks_dropped,
            }
        return info


class PipelineWorker(QueueWorker[AudioFrame]):
    """Drives MicPipeline.tick() from the capture queue."""

    def __init__(self, *, stop_signal: GracefulShutdown, input_queue: "queue.Queue[AudioFrame]",
                 pipeline: "MicPipeline"):
        super().__init__(name="PipelineThread", stop_signal=stop_signal, input_queue=input_queue)
        self._pipeline = pipeline

    def handle(self, item: AudioFrame) -> None:
        self._pipeline.tick(item)

    def on_error(self, item: AudioFrame, error: Exception) -> None:
        logger.exception("Error processing audio frame (generation %d)", item.generation)


class MicPipeline:
    """
    Controller for the voice-gated local microphone.

    start() never raises for acquisition, graph or publish failures: it returns False,
    leaves the state FAILED and emits the error on `errors`.
    """

    def __init__(
        self,
        config: PipelineConfig,
        transport: Transport,
        acquirer: Optional[StreamAcquirer] = None,
        detector_factory: Optional[DetectorFactory] = None,
    ):
        self._config = config
        self._acquirer = acquirer or StreamAcquirer()
        self._owns_acquirer = acquirer is None
        self._detector_factory = detector_factory or create_detector
        self._publisher = OutputPublisher(transport)

        self.state_changes: EventChannel[PipelineStateChange] = EventChannel("pipeline.state")
        self.voice_changes: EventChannel[VoiceTransition] = EventChannel("pipeline.voice")
        self.errors: EventChannel[PipelineError] = EventChannel("pipeline.errors")
        self.gate_open: EventChannel[bool] = EventChannel("pipeline.gate_open")

        self._state = PipelineState.UNINITIALIZED
        self._lock = threading.RLock()
        self._handle: Optional[PipelineHandle] = None
        self._generation = 0
        self._frames: "queue.Queue[AudioFrame]" = queue.Queue(maxsize=FrameConfig().max_frames_queue)
        self._cancel = GracefulShutdown("acquire-cancel")
        self._worker_stop: Optional[GracefulShutdown] = None
        self._worker: Optional[PipelineWorker] = None
        self._reconciler: Optional[SettingsReconciler] = None
        self._torn_down = False
        # Bumped by every start(); work queued by an older session must not touch this one.
        self._session = 0
        self.stale_frames = 0
        self.last_error: Optional[PipelineError] = None

    # State

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def handle(self) -> Optional[PipelineHandle]:
        return self._handle

    @property
    def publisher(self) -> OutputPublisher:
        return self._publisher

    @property
    def reconciler(self) -> Optional[SettingsReconciler]:
        return self._reconciler

    @property
    def is_gate_open(self) -> bool:
        handle = self._handle
        return handle is not None and handle.gate is not None and handle.gate.gate_open

    @property
    def mic_enabled(self) -> bool:
        return self._state in (PipelineState.ACTIVE, PipelineState.RECONFIGURING)

    def _set_state(self, state: PipelineState, reason: Optional[str] = None) -> None:
        previous = self._state
        if previous is state:
            return
        if previous is PipelineState.TORN_DOWN and state is not PipelineState.ACQUIRING:
            return
        self._state = state
        if reason:
            logger.info("Pipeline %s -> %s (%s)", previous.name, state.name, reason)
        else:
            logger.info("Pipeline %s -> %s", previous.name, state.name)
        self.state_changes.emit(PipelineStateChange(previous, state, reason))

    def _report(self, error: PipelineError) -> None:
        self.last_error = error
        self.errors.emit(error)

    def _fail(self, error: PipelineError) -> None:
        logger.error(f"Microphone pipeline failed: {error}")
        self._report(error)
        self._set_state(PipelineState.FAILED, type(error).__name__)

    # Event sinks. These read controller state at delivery time.

    def _on_voice(self, transition: VoiceTransition) -> None:
        self.voice_changes.emit(transition)

    def _on_gate(self, is_open: bool) -> None:
        self.gate_open.emit(is_open)

    # Lifecycle

    def start(self) -> bool:
        """Acquire the microphone, build the graph and publish. Returns False on failure."""
        if self._state in (PipelineState.ACQUIRING, PipelineState.GRAPH_BUILT,
                           PipelineState.ACTIVE, PipelineState.RECONFIGURING):
            return True

        if self._reconciler is not None:
            self._reconciler.close()
            self._reconciler = None
        with self._lock:
            self._session += 1
            session = self._session
            self._torn_down = False
            self._cancel = cancel = GracefulShutdown("acquire-cancel")
        self._set_state(PipelineState.ACQUIRING)

        try:
            handle = self._build_handle(self._config, cancel)
        except PipelineError as e:
            self._fail(e)
            return False

        with self._lock:
            if not self._is_current(session):
                handle.close()
                return False
            previous, self._handle = self._handle, handle
        if previous is not None:
            previous.close()
        self._set_state(PipelineState.GRAPH_BUILT)

        try:
            self._publisher.replace_track(handle.track)
        except PublishError as e:
            self._discard_handle()
            self._fail(e)
            return False

        self._reconciler = SettingsReconciler(
            self._config,
            apply_live=partial(self._apply_live, session=session),
            rebuild=partial(self._rebuild, session=session),
            on_rebuild_failed=partial(self._on_rebuild_failed, session=session),
        )
        self._start_worker()
        handle.resume()
        self._set_state(PipelineState.ACTIVE)
        return True

    def stop(self) -> None:
        """Release everything immediately, even mid-rebuild. Safe to call repeatedly."""
        if self._state is PipelineState.TORN_DOWN:
            return

        reconciler, self._reconciler = self._reconciler, None
        if reconciler is not None:
            reconciler.close()
        self._cancel.stop("pipeline stopped")

        with self._lock:
            self._torn_down = True
        self._discard_handle()

        try:
            self._publisher.unpublish()
        except PublishError as e:
            logger.warning(f"Error unpublishing track: {e}")
            self._report(e)

        self._stop_worker()
        self._set_state(PipelineState.TORN_DOWN)

    def close(self) -> None:
        self.stop()
        if self._owns_acquirer:
            self._acquirer.close()

    def resume_engine(self) -> bool:
        """Resume audio rendering (user-interaction hook). Pending parameter writes are applied."""
        with self._lock:
            handle = self._handle
            return handle is not None and handle.resume()

    def suspend_engine(self) -> None:
        with self._lock:
            if self._handle is not None and self._handle.engine is not None:
                self._handle.engine.suspend()

    def _start_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker_stop = GracefulShutdown("pipeline-worker")
        self._worker = PipelineWorker(stop_signal=self._worker_stop, input_queue=self._frames, pipeline=self)
        self._worker.start()

    def _stop_worker(self) -> None:
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.stop()
        self._worker_stop = None

    # Handles

    def _next_generation(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def _is_current(self, session: int) -> bool:
        # Caller holds the lock.
        return not self._torn_down and session == self._session

    def _build_handle(self, config: PipelineConfig, cancel: GracefulShutdown) -> PipelineHandle:
        stream = self._acquirer.acquire(
            config.device_id,
            constraints_for(config),
            self._frames,
            generation=self._next_generation(),
            cancel=cancel,
            timeout_s=config.acquire_timeout_s,
        )
        handle = PipelineHandle(
            config,
            stream,
            self._detector_factory,
            voice_sink=self._on_voice,
            gate_sink=self._on_gate,
            error_sink=self._report,
        )
        return handle.build()

    def _discard_handle(self, session: Optional[int] = None) -> None:
        with self._lock:
            if session is not None and session != self._session:
                return
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.close()

    # Ticks

    def tick(self, frame: AudioFrame) -> Optional[DetectionResult]:
        with self._lock:
            handle = self._handle
            if handle is None or frame.generation != handle.generation:
                self.stale_frames += 1
                return None
            return handle.process(frame)

    # Reconfiguration

    def reconfigure(self, config: PipelineConfig) -> "Future[ChangeSet]":
        """
        Apply `config`. Live settings take effect in place; capture settings rebuild the
        stream, graph and detector. The returned future resolves once applied.
        """
        reconciler = self._reconciler
        if reconciler is None or not self.mic_enabled:
            self._config = config
            future: Future = Future()
            future.set_result(ChangeSet())
            return future
        return reconciler.reconfigure(config)

    def _apply_live(self, config: PipelineConfig, changes: ChangeSet, session: int) -> None:
        with self._lock:
            if not self._is_current(session):
                raise RebuildError("Pipeline restarted or torn down before settings were applied")
            if self._handle is not None:
                self._handle.apply_live(config, changes)
            self._config = config
        logger.info("Applied live settings: %s", ", ".join(sorted(changes.live | changes.other)) or "none")

    def _rebuild(self, config: PipelineConfig, session: int) -> None:
        with self._lock:
            if not self._is_current(session):
                raise RebuildError("Pipeline restarted or torn down before rebuild")
            cancel = self._cancel
            self._set_state(PipelineState.RECONFIGURING, "capture settings changed")
        # The device is exclusive: release the old stream before asking for a new one.
        self._discard_handle(session)

        handle = self._build_handle(config, cancel)
        with self._lock:
            if not self._is_current(session):
                handle.close()
                raise RebuildError("Pipeline restarted or torn down during rebuild")
            previous, self._handle = self._handle, handle
        if previous is not None:
            previous.close()

        try:
            self._publisher.replace_track(handle.track)
        except PublishError:
            self._discard_handle(session)
            raise

        handle.resume()
        self._config = config
        self._set_state(PipelineState.ACTIVE)

    def _on_rebuild_failed(self, error: RebuildError, session: int) -> None:
        with self._lock:
            current = self._is_current(session)
        if not current:
            logger.info(f"Ignoring rebuild failure from a finished session: {error}")
            return
        self._report(error)
        if not error.fatal:
            return
        # The previously published track stays published; only the mic is disabled.
        self._discard_handle(session)
        self._publisher.notify_error(error)
        self._set_state(PipelineState.FAILED, "rebuild failed")

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        reconciler = self._reconciler
        return reconciler is None or reconciler.wait_idle(timeout)

    # Diagnostics

    def get_debug_info(self) -> dict:
        # Read outside the pipeline lock; the reconciler guards these with its own.
        reconciler = self._reconciler
        rebuild_stats = None
        if reconciler is not None:
            rebuild_stats = {
                "rebuilds_started": reconciler.rebuilds_started,
                "rebuilds_completed": reconciler.rebuilds_completed,
                "rebuild_busy": reconciler.busy,
            }
        with self._lock:
            handle = self._handle
            info = {
                "state": self._state.name,
                "mic_enabled": self.mic_enabled,
                "config": self._config.model_dump(),
                "published_track": self._publisher.track.track_id if self._publisher.track else None,
                "stale_frames": self.stale_frames,
                "last_error": str(self.last_error) if self.last_error else None,
            }
            if rebuild_stats is not None:
                info.update(rebuild_stats)
            if handle is not None:
                info.update(handle.debug_info())
        return info
