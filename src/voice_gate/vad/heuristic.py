"""Energy + spectrum heuristic voice activity detection."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

import numpy as np

from ..audio.input.types import AnalysisFrame
from ..config.settings import PipelineConfig
from .base import DetectionResult, VoiceActivityDetector

logger = logging.getLogger(__name__)

# Volume shaping
RMS_BOOST = 12.0
PEAK_BOOST = 3.0
VARIANCE_BOOST = 8.0
RMS_WEIGHT = 0.6
PEAK_WEIGHT = 0.2
VARIANCE_WEIGHT = 0.2
MIN_AUDIBLE_VOLUME = 0.02
RISING_SMOOTHING_SCALE = 0.3

# Spectrum
SPEECH_BAND_HZ = (85.0, 4000.0)
CENTROID_RANGE_HZ = (300.0, 3000.0)
SPEECH_RATIO_WEIGHT = 0.3
CENTROID_BONUS = 0.1
MAX_SPECTRAL_BONUS = 0.3
SPECTRAL_BONUS_WEIGHT = 0.2

HISTORY_SIZE = 10


@dataclass(frozen=True)
class SpectralFeatures:
    total_energy: float
    speech_energy: float
    spectral_centroid: float


def compute_volume(samples: np.ndarray) -> float:
    """Boosted loudness in [0, 1] from RMS, peak and spread of the sample amplitudes."""
    if samples.size == 0:
        return 0.0
    amplitude = np.abs(samples.astype(np.float64))
    if not np.any(amplitude):
        return 0.0

    rms = float(np.sqrt(np.mean(amplitude ** 2)))
    peak = float(amplitude.max())
    variance = float(np.sqrt(np.mean((amplitude - rms) ** 2)))

    combined = (
        RMS_WEIGHT * rms * RMS_BOOST
        + PEAK_WEIGHT * peak * PEAK_BOOST
        + VARIANCE_WEIGHT * variance * VARIANCE_BOOST
    )
    enhanced = combined ** 0.5
    if enhanced <= MIN_AUDIBLE_VOLUME:
        return 0.0
    return min(enhanced, 1.0)


def analyze_spectrum(frequency_domain: np.ndarray, bin_hz: float) -> SpectralFeatures:
    energy = frequency_domain.astype(np.float64) ** 2
    total = float(energy.sum())
    if total == 0.0:
        return SpectralFeatures(0.0, 0.0, 0.0)

    freqs = np.arange(len(energy)) * bin_hz
    low, high = SPEECH_BAND_HZ
    speech = float(energy[(freqs >= low) & (freqs <= high)].sum())
    centroid = float((freqs * energy).sum() / total)
    return SpectralFeatures(total, speech, centroid)


def spectral_bonus(features: SpectralFeatures) -> float:
    if features.total_energy == 0.0:
        return 0.0
    speech_ratio = features.speech_energy / features.total_energy
    low, high = CENTROID_RANGE_HZ
    centroid_bonus = CENTROID_BONUS if low < features.spectral_centroid < high else 0.0
    return min(speech_ratio * SPEECH_RATIO_WEIGHT + centroid_bonus, MAX_SPECTRAL_BONUS)


class HeuristicVAD(VoiceActivityDetector):
    """
    Lightweight detector driven by smoothed loudness.

    The probability is a hard volume gate plus a small spectral bonus, so a quiet but
    speech-shaped frame can still report a non-zero probability below the threshold.
    """

    strategy = "heuristic"

    def __init__(self, config: PipelineConfig):
        super().__init__(config)
        self.smoothing_factor = config.smoothing_factor
        self.current_volume = 0.0
        self.smoothed_volume = 0.0
        self.last_bonus = 0.0
        self.volume_history: deque[float] = deque(maxlen=HISTORY_SIZE)

    def update_config(self, config: PipelineConfig) -> bool:
        changed = super().update_config(config)
        if config.smoothing_factor != self.smoothing_factor:
            self.smoothing_factor = config.smoothing_factor
            changed = True
        return changed

    def _smooth(self, volume: float) -> float:
        # Rise fast so word onsets are not clipped, fall at the normal rate.
        factor = self.smoothing_factor
        if volume > self.smoothed_volume:
            factor *= RISING_SMOOTHING_SCALE
        self.smoothed_volume = self.smoothed_volume * factor + volume * (1.0 - factor)
        return self.smoothed_volume

    def detect(self, frame: AnalysisFrame) -> DetectionResult:
        volume = compute_volume(frame.time_domain)
        self.current_volume = volume
        smoothed = self._smooth(volume)

        features = analyze_spectrum(frame.frequency_domain, frame.bin_hz)
        bonus = spectral_bonus(features)
        self.last_bonus = bonus

        gate = 1.0 if smoothed >= self.machine.positive_threshold else 0.0
        probability = min(gate + bonus * SPECTRAL_BONUS_WEIGHT, 1.0)

        self._observe(probability)
        self.volume_history.append(volume)

        return DetectionResult(probability=probability, is_speaking=self.is_speaking, volume=smoothed)

    def reset(self) -> None:
        super().reset()
        self.current_volume = 0.0
        self.smoothed_volume = 0.0
        self.last_bonus = 0.0
        self.volume_history.clear()

    def debug_info(self) -> dict:
        info = super().debug_info()
        info.update({
            "current_volume": self.current_volume,
            "smoothed_volume": self.smoothed_volume,
            "spectral_bonus": self.last_bonus,
            "smoothing_factor": self.smoothing_factor,
            "volume_history": list(self.volume_history),
        })
        return info
