"""Model-based voice activity detection backed by Silero VAD."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from math import gcd
from typing import Callable, Optional

import numpy as np
import torch
from scipy import signal
from silero_vad import load_silero_vad

from ..audio.input.types import AnalysisFrame
from ..config.settings import PipelineConfig
from ..core.errors import DetectorInitError
from ..core.events import VoiceState
from .base import DetectionResult, VoiceActivityDetector

logger = logging.getLogger(__name__)

MODEL_SAMPLE_RATE = 16000
MODEL_CHUNK_SIZE = 512  # Required chunk size for 16kHz


@dataclass(frozen=True)
class SpeechSegment:
    """Audio of one confirmed speech segment, at the model sample rate."""
    pcm: np.ndarray
    sample_rate: int
    speech_chunks: int

    @property
    def duration_s(self) -> float:
        return len(self.pcm) / self.sample_rate


class SileroDriver:
    """
    Runs the Silero model over a live stream and reports segments through callbacks.

    A segment opens on the first chunk at/above the positive threshold and closes after
    `redemption_frames` consecutive chunks below the negative threshold. speech_start()
    fires once the segment has `min_speech_frames` positive chunks; a segment that closes
    before that raises misfire() instead of speech_end().
    """

    def __init__(
        self,
        model,
        positive_threshold: float,
        negative_threshold: float,
        min_speech_frames: int,
        redemption_frames: int,
        on_speech_start: Callable[[], None],
        on_speech_end: Callable[[SpeechSegment], None],
        on_misfire: Callable[[], None],
    ):
        self._model = model
        self.positive_threshold = positive_threshold
        self.negative_threshold = negative_threshold
        self.min_speech_frames = min_speech_frames
        self.redemption_frames = redemption_frames
        self._on_speech_start = on_speech_start
        self._on_speech_end = on_speech_end
        self._on_misfire = on_misfire

        self._chunk_buffer = np.array([], dtype=np.float32)
        self._segment_parts: list[np.ndarray] = []
        self._in_segment = False
        self._confirmed = False
        self._speech_chunks = 0
        self._redemption_counter = 0
        self.last_probability = 0.0
        self.chunks_processed = 0

    @classmethod
    def load(cls, config: PipelineConfig, **callbacks) -> "SileroDriver":
        model = load_silero_vad(onnx=True, opset_version=16)
        return cls(
            model,
            positive_threshold=config.positive_threshold,
            negative_threshold=config.negative_threshold,
            min_speech_frames=config.min_speech_frames,
            redemption_frames=config.redemption_frames,
            **callbacks,
        )

    @property
    def in_segment(self) -> bool:
        return self._in_segment

    def _resample(self, pcm: np.ndarray, sample_rate: int) -> np.ndarray:
        if sample_rate == MODEL_SAMPLE_RATE:
            return pcm.astype(np.float32, copy=False)
        g = gcd(MODEL_SAMPLE_RATE, sample_rate)
        return signal.resample_poly(pcm, MODEL_SAMPLE_RATE // g, sample_rate // g).astype(np.float32)

    def _score(self, chunk: np.ndarray) -> float:
        with torch.no_grad():
            return float(self._model(torch.from_numpy(chunk), MODEL_SAMPLE_RATE).item())

    def process(self, pcm: np.ndarray, sample_rate: int) -> float:
        """Feed one block of mono audio. Returns the most recent chunk probability."""
        self._chunk_buffer = np.concatenate([self._chunk_buffer, self._resample(pcm, sample_rate)])

        while len(self._chunk_buffer) >= MODEL_CHUNK_SIZE:
            chunk = self._chunk_buffer[:MODEL_CHUNK_SIZE]
            self._chunk_buffer = self._chunk_buffer[MODEL_CHUNK_SIZE:]
            self.last_probability = self._score(chunk)
            self.chunks_processed += 1
            self._handle_chunk(chunk, self.last_probability)

        return self.last_probability

    def _handle_chunk(self, chunk: np.ndarray, probability: float) -> None:
        if probability >= self.positive_threshold:
            self._redemption_counter = 0
            if not self._in_segment:
                self._in_segment = True
                self._confirmed = False
                self._speech_chunks = 0
                self._segment_parts = []
            self._speech_chunks += 1

        if not self._in_segment:
            return

        self._segment_parts.append(chunk)

        if not self._confirmed and self._speech_chunks >= self.min_speech_frames:
            self._confirmed = True
            self._on_speech_start()

        if probability < self.negative_threshold:
            self._redemption_counter += 1
            if self._redemption_counter >= self.redemption_frames:
                self._close_segment()

    def _close_segment(self) -> None:
        confirmed = self._confirmed
        segment = SpeechSegment(
            pcm=np.concatenate(self._segment_parts) if self._segment_parts else np.array([], dtype=np.float32),
            sample_rate=MODEL_SAMPLE_RATE,
            speech_chunks=self._speech_chunks,
        )
        self._in_segment = False
        self._confirmed = False
        self._speech_chunks = 0
        self._redemption_counter = 0
        self._segment_parts = []

        if confirmed:
            self._on_speech_end(segment)
        else:
            self._on_misfire()

    def reset(self) -> None:
        self._chunk_buffer = np.array([], dtype=np.float32)
        self._segment_parts = []
        self._in_segment = False
        self._confirmed = False
        self._speech_chunks = 0
        self._redemption_counter = 0
        self.last_probability = 0.0
        reset_states = getattr(self._model, "reset_states", None)
        if reset_states is not None:
            reset_states()


class ModelVAD(VoiceActivityDetector):
    """
    Strategy driven by an external classifier's callbacks instead of per-frame polling.

    The classifier decides when speech starts and ends; those decisions are applied to
    the shared hysteresis machine. A misfire is handled exactly like the end of speech.
    """

    strategy = "model"

    def __init__(self, config: PipelineConfig, driver_factory: Optional[Callable[..., SileroDriver]] = None):
        super().__init__(config)
        factory = driver_factory or SileroDriver.load
        try:
            self.driver = factory(
                config,
                on_speech_start=self.speech_start,
                on_speech_end=self.speech_end,
                on_misfire=self.misfire,
            )
        except Exception as e:
            raise DetectorInitError(f"Failed to load speech model: {e}") from e
        self.segments_completed = 0
        self.misfires = 0
        logger.info("Model VAD ready (silero, %d Hz chunks of %d)", MODEL_SAMPLE_RATE, MODEL_CHUNK_SIZE)

    # Classifier callbacks

    def speech_start(self) -> None:
        self._force(VoiceState.SPEECH)

    def speech_end(self, segment: SpeechSegment) -> None:
        self.segments_completed += 1
        logger.debug("Speech segment ended after %.2fs", segment.duration_s)
        self._force(VoiceState.SILENCE)

    def misfire(self) -> None:
        self.misfires += 1
        logger.debug("Speech segment misfired")
        self._force(VoiceState.SILENCE)

    def update_config(self, config: PipelineConfig) -> bool:
        changed = super().update_config(config)
        self.driver.positive_threshold = config.positive_threshold
        self.driver.negative_threshold = config.negative_threshold
        self.driver.min_speech_frames = config.min_speech_frames
        self.driver.redemption_frames = config.redemption_frames
        return changed

    def detect(self, frame: AnalysisFrame) -> DetectionResult:
        self.machine.frame_index += 1
        probability = self.driver.process(frame.time_domain, frame.sample_rate)
        self.last_probability = probability
        return DetectionResult(probability=probability, is_speaking=self.is_speaking)

    def reset(self) -> None:
        super().reset()
        self.driver.reset()

    def debug_info(self) -> dict:
        info = super().debug_info()
        info.update({
            "in_segment": self.driver.in_segment,
            "chunks_processed": self.driver.chunks_processed,
            "segments_completed": self.segments_completed,
            "misfires": self.misfires,
        })
        return info
