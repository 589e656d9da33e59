"""Processing nodes of the conditioning graph."""

from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np
from scipy import signal

from .engine import AudioEngine, AudioParam
from .input.types import AnalysisFrame

logger = logging.getLogger(__name__)

# Analyser byte-data range (dB) mapped onto [0, 1].
ANALYSER_MIN_DB = -120.0
ANALYSER_MAX_DB = -10.0
ANALYSER_FFT_SIZE = 4096
ANALYSER_SMOOTHING = 0.1

_EPS = 1e-12


class AudioNode:
    """Base node: a block-in, block-out processor bound to an engine."""

    def __init__(self, engine: AudioEngine, name: str):
        self.engine = engine
        self.name = name
        self.connected = True

    def process(self, block: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def reset(self) -> None:
        """Drop any internal signal state."""

    def disconnect(self) -> None:
        self.connected = False
        self.reset()


class AnalysisTap(AudioNode):
    """
    Pass-through node that snapshots the signal for the detector.

    The frequency buffer follows analyser semantics: Blackman window over the last
    `fft_size` samples, magnitude smoothing, dB mapped into [0, 1].
    """

    def __init__(self, engine: AudioEngine, fft_size: int = ANALYSER_FFT_SIZE,
                 smoothing: float = ANALYSER_SMOOTHING):
        super().__init__(engine, "analysis_tap")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self._window = np.blackman(fft_size)
        self._history = np.zeros(fft_size, dtype=np.float64)
        self._magnitudes = np.zeros(fft_size // 2 + 1, dtype=np.float64)
        self._count = 0
        self.latest: Optional[AnalysisFrame] = None

    def process(self, block: np.ndarray) -> np.ndarray:
        n = len(block)
        if n >= self.fft_size:
            self._history[:] = block[-self.fft_size:]
        else:
            self._history = np.roll(self._history, -n)
            self._history[-n:] = block

        spectrum = np.abs(np.fft.rfft(self._history * self._window)) / self.fft_size
        self._magnitudes = self.smoothing * self._magnitudes + (1.0 - self.smoothing) * spectrum
        db = 20.0 * np.log10(self._magnitudes + _EPS)
        normalized = np.clip((db - ANALYSER_MIN_DB) / (ANALYSER_MAX_DB - ANALYSER_MIN_DB), 0.0, 1.0)

        self._count += 1
        self.latest = AnalysisFrame(
            time_domain=block.astype(np.float32, copy=True),
            frequency_domain=normalized.astype(np.float32),
            sample_rate=self.engine.sample_rate,
            timestamp_s=self.engine.current_time,
            index=self._count,
        )
        return block

    def reset(self) -> None:
        self._history[:] = 0.0
        self._magnitudes[:] = 0.0
        self.latest = None


class GainNode(AudioNode):
    def __init__(self, engine: AudioEngine, name: str = "gain", value: float = 1.0,
                 min_value: float = 0.0, max_value: float = 4.0):
        super().__init__(engine, name)
        self.gain: AudioParam = engine.create_param(f"{name}.gain", value, min_value, max_value)

    def process(self, block: np.ndarray) -> np.ndarray:
        return block * self.gain.render(len(block))


class GateNode(GainNode):
    """Gain node restricted to [0, 1]; the gate controller drives it."""

    def __init__(self, engine: AudioEngine, value: float = 1.0):
        super().__init__(engine, "gate", value=value, min_value=0.0, max_value=1.0)


def biquad_coefficients(kind: str, frequency: float, q: float, sample_rate: int) -> tuple[np.ndarray, np.ndarray]:
    """RBJ cookbook lowpass/highpass coefficients, normalized by a0."""
    frequency = min(max(frequency, 10.0), 0.45 * sample_rate)
    q = max(q, 1e-4)
    w0 = 2.0 * math.pi * frequency / sample_rate
    cos_w0 = math.cos(w0)
    alpha = math.sin(w0) / (2.0 * q)

    if kind == "lowpass":
        b = [(1.0 - cos_w0) / 2.0, 1.0 - cos_w0, (1.0 - cos_w0) / 2.0]
    elif kind == "highpass":
        b = [(1.0 + cos_w0) / 2.0, -(1.0 + cos_w0), (1.0 + cos_w0) / 2.0]
    else:
        raise ValueError(f"Unsupported biquad type: {kind}")
    a = [1.0 + alpha, -2.0 * cos_w0, 1.0 - alpha]
    return np.asarray(b) / a[0], np.asarray(a) / a[0]


class BiquadFilterNode(AudioNode):
    """Second-order filter; frequency and Q are sampled once per block."""

    def __init__(self, engine: AudioEngine, kind: str, frequency: float, q: float = 0.7):
        super().__init__(engine, kind)
        self.kind = kind
        nyquist = engine.sample_rate / 2
        self.frequency = engine.create_param(f"{kind}.frequency", frequency, 10.0, nyquist)
        self.q = engine.create_param(f"{kind}.q", q, 1e-4, 100.0)
        self._zi = np.zeros(2, dtype=np.float64)
        self._coeff_key: Optional[tuple[float, float]] = None
        self._b, self._a = biquad_coefficients(kind, frequency, q, engine.sample_rate)

    def _update_coefficients(self) -> None:
        key = (self.frequency.value, self.q.value)
        if key != self._coeff_key:
            self._b, self._a = biquad_coefficients(self.kind, key[0], key[1], self.engine.sample_rate)
            self._coeff_key = key

    def process(self, block: np.ndarray) -> np.ndarray:
        self._update_coefficients()
        out, self._zi = signal.lfilter(self._b, self._a, block.astype(np.float64), zi=self._zi)
        return out.astype(np.float32)

    def reset(self) -> None:
        self._zi = np.zeros(2, dtype=np.float64)


class DynamicsCompressorNode(AudioNode):
    """
    Feed-forward soft-knee compressor.

    Static gain reduction is computed vectorized; only the attack/release smoothing
    of the reduction runs per sample.
    """

    def __init__(self, engine: AudioEngine, threshold_db: float = -24.0, ratio: float = 12.0,
                 attack_s: float = 0.003, release_s: float = 0.25, knee_db: float = 6.0):
        super().__init__(engine, "compressor")
        self.threshold = engine.create_param("compressor.threshold", threshold_db, -100.0, 0.0)
        self.ratio = engine.create_param("compressor.ratio", ratio, 1.0, 20.0)
        self.attack = engine.create_param("compressor.attack", attack_s, 0.0, 1.0)
        self.release = engine.create_param("compressor.release", release_s, 0.0, 1.0)
        self.knee = engine.create_param("compressor.knee", knee_db, 0.0, 40.0)
        self._reduction_db = 0.0

    @property
    def reduction_db(self) -> float:
        return self._reduction_db

    def _static_reduction(self, level_db: np.ndarray, threshold: float, ratio: float, knee: float) -> np.ndarray:
        over = level_db - threshold
        slope = 1.0 / ratio - 1.0
        reduction = np.where(over > 0.0, slope * over, 0.0)
        if knee > 0.0:
            in_knee = np.abs(over) <= knee / 2.0
            knee_curve = slope * (over + knee / 2.0) ** 2 / (2.0 * knee)
            reduction = np.where(in_knee, knee_curve, reduction)
        return reduction

    def process(self, block: np.ndarray) -> np.ndarray:
        ratio = self.ratio.value
        if ratio <= 1.0 and self._reduction_db == 0.0:
            return block

        fs = self.engine.sample_rate
        threshold = self.threshold.value
        knee = self.knee.value
        attack = self.attack.value
        release = self.release.value
        attack_coeff = math.exp(-1.0 / (attack * fs)) if attack > 0 else 0.0
        release_coeff = math.exp(-1.0 / (release * fs)) if release > 0 else 0.0

        level_db = 20.0 * np.log10(np.abs(block.astype(np.float64)) + _EPS)
        target = self._static_reduction(level_db, threshold, max(ratio, 1.0), knee)

        smoothed = np.empty_like(target)
        g = self._reduction_db
        for i, t in enumerate(target):
            coeff = attack_coeff if t < g else release_coeff
            g = coeff * g + (1.0 - coeff) * t
            smoothed[i] = g
        # Snap to zero once fully released so the bypass path can take over.
        self._reduction_db = g if abs(g) > 1e-6 else 0.0

        return (block * np.power(10.0, smoothed / 20.0)).astype(np.float32)

    def reset(self) -> None:
        self._reduction_db = 0.0
