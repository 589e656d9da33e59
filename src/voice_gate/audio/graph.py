"""
Fixed-topology conditioning graph.

source -> analysis tap -> gain -> highpass -> lowpass -> compressor -> gate -> output
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..core.errors import GraphInitError
from .engine import AudioEngine, AudioParam
from .input.types import AnalysisFrame
from .nodes import (
    AnalysisTap,
    AudioNode,
    BiquadFilterNode,
    DynamicsCompressorNode,
    GainNode,
    GateNode,
)

logger = logging.getLogger(__name__)

# Ramp used for every live parameter change.
PARAM_RAMP_S = 0.05

AUDIO_CLIP_MIN = -1.0
AUDIO_CLIP_MAX = 1.0


@dataclass(frozen=True)
class FilterBand:
    highpass_hz: float
    lowpass_hz: float
    q: float = 0.7


@dataclass(frozen=True)
class Dynamics:
    threshold_db: float
    ratio: float
    attack_s: float
    release_s: float
    post_gain: float


SPEECH_BAND = FilterBand(highpass_hz=85.0, lowpass_hz=8000.0, q=0.7)
FULL_BAND = FilterBand(highpass_hz=20.0, lowpass_hz=20000.0, q=0.7)

SPEECH_DYNAMICS = Dynamics(threshold_db=-24.0, ratio=12.0, attack_s=0.003, release_s=0.25, post_gain=1.2)
FLAT_DYNAMICS = Dynamics(threshold_db=-24.0, ratio=1.0, attack_s=0.003, release_s=0.25, post_gain=1.0)


@dataclass(frozen=True)
class ConditioningProfile:
    """Filter band follows noise suppression; dynamics follow auto gain control."""
    band: FilterBand
    dynamics: Dynamics

    @classmethod
    def select(cls, noise_suppression: bool, auto_gain_control: bool) -> "ConditioningProfile":
        return cls(
            band=SPEECH_BAND if noise_suppression else FULL_BAND,
            dynamics=SPEECH_DYNAMICS if auto_gain_control else FLAT_DYNAMICS,
        )


PROFILE_ON = ConditioningProfile(SPEECH_BAND, SPEECH_DYNAMICS)
PROFILE_OFF = ConditioningProfile(FULL_BAND, FLAT_DYNAMICS)


def downmix(pcm: np.ndarray) -> np.ndarray:
    if pcm.ndim == 1:
        return pcm.astype(np.float32, copy=False)
    return pcm.mean(axis=1).astype(np.float32)


class AudioGraph:
    """Owns the node chain of one pipeline handle and its parameter setters."""

    def __init__(self, engine: AudioEngine, profile: ConditioningProfile, gate_gain: float = 1.0):
        self.engine = engine
        self.profile = profile
        try:
            self.tap = AnalysisTap(engine)
            self.gain = GainNode(engine, "gain", value=profile.dynamics.post_gain)
            self.highpass = BiquadFilterNode(engine, "highpass", profile.band.highpass_hz, profile.band.q)
            self.lowpass = BiquadFilterNode(engine, "lowpass", profile.band.lowpass_hz, profile.band.q)
            self.compressor = DynamicsCompressorNode(
                engine,
                threshold_db=profile.dynamics.threshold_db,
                ratio=profile.dynamics.ratio,
                attack_s=profile.dynamics.attack_s,
                release_s=profile.dynamics.release_s,
            )
            self.gate = GateNode(engine, value=gate_gain)
        except Exception as e:
            raise GraphInitError(f"Failed to build processing graph: {e}") from e

        self._chain: list[AudioNode] = [
            self.tap, self.gain, self.highpass, self.lowpass, self.compressor, self.gate,
        ]
        self._disconnected = False
        logger.info(
            "Graph built at %d Hz: highpass %.0f Hz, lowpass %.0f Hz, ratio %.0f:1, post-gain x%.1f",
            engine.sample_rate, profile.band.highpass_hz, profile.band.lowpass_hz,
            profile.dynamics.ratio, profile.dynamics.post_gain,
        )

    @property
    def nodes(self) -> list[AudioNode]:
        return list(self._chain)

    @property
    def latest_analysis(self) -> Optional[AnalysisFrame]:
        return self.tap.latest

    def process(self, pcm: np.ndarray) -> Optional[np.ndarray]:
        """Render one block. Returns None when the engine is not rendering."""
        if self._disconnected or not self.engine.running:
            return None
        block = downmix(pcm)
        for node in self._chain:
            block = node.process(block)
        self.engine.advance(len(block))
        return np.clip(block, AUDIO_CLIP_MIN, AUDIO_CLIP_MAX).astype(np.float32)

    def set_param(self, param: AudioParam, value: float, ramp_s: float = PARAM_RAMP_S) -> bool:
        return param.set_target(value, ramp_s)

    def set_post_gain(self, value: float) -> bool:
        return self.set_param(self.gain.gain, value)

    def set_highpass(self, frequency: float, q: Optional[float] = None) -> bool:
        changed = self.set_param(self.highpass.frequency, frequency)
        if q is not None:
            changed = self.set_param(self.highpass.q, q) or changed
        return changed

    def set_lowpass(self, frequency: float, q: Optional[float] = None) -> bool:
        changed = self.set_param(self.lowpass.frequency, frequency)
        if q is not None:
            changed = self.set_param(self.lowpass.q, q) or changed
        return changed

    def set_compressor(self, threshold_db: float, ratio: float, attack_s: float, release_s: float) -> bool:
        changed = False
        for param, value in (
            (self.compressor.threshold, threshold_db),
            (self.compressor.ratio, ratio),
            (self.compressor.attack, attack_s),
            (self.compressor.release, release_s),
        ):
            changed = self.set_param(param, value) or changed
        return changed

    def apply_profile(self, profile: ConditioningProfile) -> bool:
        """Ramp every conditioning parameter toward `profile`. Returns True if anything moved."""
        if profile == self.profile:
            return False
        self.profile = profile
        changed = self.set_highpass(profile.band.highpass_hz, profile.band.q)
        changed = self.set_lowpass(profile.band.lowpass_hz, profile.band.q) or changed
        d = profile.dynamics
        changed = self.set_compressor(d.threshold_db, d.ratio, d.attack_s, d.release_s) or changed
        changed = self.set_post_gain(d.post_gain) or changed
        logger.info(
            "Conditioning profile -> band %.0f-%.0f Hz, ratio %.0f:1, post-gain x%.1f",
            profile.band.highpass_hz, profile.band.lowpass_hz, d.ratio, d.post_gain,
        )
        return changed

    def snapshot(self) -> dict:
        return {
            "post_gain": self.gain.gain.value,
            "highpass_hz": self.highpass.frequency.value,
            "lowpass_hz": self.lowpass.frequency.value,
            "compressor_ratio": self.compressor.ratio.value,
            "compressor_threshold_db": self.compressor.threshold.value,
            "compressor_reduction_db": self.compressor.reduction_db,
            "gate_gain": self.gate.gain.value,
        }

    def disconnect(self) -> None:
        if self._disconnected:
            return
        self._disconnected = True
        for node in self._chain:
            try:
                node.disconnect()
            except Exception as e:
                logger.warning("Error disconnecting %s: %s", node.name, e)
        logger.debug("Graph disconnected")
