"""Tests for the gate controller."""

import numpy as np
import pytest

from voice_gate.audio.engine import AudioEngine
from voice_gate.audio.nodes import GateNode
from voice_gate.config.settings import PipelineConfig
from voice_gate.core.events import VoiceState
from voice_gate.gate import CLOSE_RAMP_S, GATE_FLOOR_GAIN, OPEN_RAMP_S, GateController
from voice_gate.vad import HeuristicVAD

SAMPLE_RATE = 48000


def advance(engine, seconds):
    engine.advance(int(SAMPLE_RATE * seconds))


@pytest.fixture
def engine():
    engine = AudioEngine(SAMPLE_RATE)
    engine.resume()
    return engine


@pytest.fixture
def detector():
    return HeuristicVAD(PipelineConfig())


@pytest.fixture
def gate(engine, detector):
    node = GateNode(engine, value=GateController.initial_gain(held_open=False))
    controller = GateController(node)
    controller.attach(detector)
    return controller


class TestGateController:
    def test_starts_closed_at_floor(self, gate):
        assert not gate.gate_open
        assert gate.state.current_gain == pytest.approx(GATE_FLOOR_GAIN)

    def test_speech_opens_quickly(self, gate, engine, detector):
        detector._force(VoiceState.SPEECH)

        assert gate.gate_open
        assert gate.state.target_gain == 1.0
        advance(engine, OPEN_RAMP_S / 2)
        assert 0.4 < gate.state.current_gain < 0.6
        advance(engine, OPEN_RAMP_S / 2)
        assert gate.state.current_gain == pytest.approx(1.0)

    def test_silence_closes_slowly_to_floor_not_zero(self, gate, engine, detector):
        detector._force(VoiceState.SPEECH)
        advance(engine, OPEN_RAMP_S)
        detector._force(VoiceState.SILENCE)

        advance(engine, OPEN_RAMP_S)
        assert gate.state.current_gain > 0.7
        advance(engine, CLOSE_RAMP_S)
        assert gate.state.current_gain == pytest.approx(GATE_FLOOR_GAIN)
        assert gate.state.current_gain > 0.0

    def test_gain_never_leaves_unit_range(self, gate, engine, detector):
        gains = []
        for state in [VoiceState.SPEECH, VoiceState.SILENCE] * 5:
            detector._force(state)
            for _ in range(7):
                gains.extend(gate.node.gain.render(480))
                engine.advance(480)
        gains = np.asarray(gains)
        assert gains.min() >= 0.0
        assert gains.max() <= 1.0

    def test_changes_channel_reports_open_and_close(self, gate, detector):
        seen = []
        gate.changes.subscribe(seen.append)
        detector._force(VoiceState.SPEECH)
        detector._force(VoiceState.SILENCE)
        assert seen == [True, False]

    def test_held_open_ignores_transitions(self, gate, detector):
        gate.hold_open("voice detection disabled")
        detector._force(VoiceState.SPEECH)
        detector._force(VoiceState.SILENCE)
        assert gate.gate_open
        assert gate.state.target_gain == 1.0

    def test_release_follows_detector_again(self, gate, detector):
        gate.hold_open("test")
        gate.release()
        assert not gate.gate_open
        assert gate.state.target_gain == pytest.approx(GATE_FLOOR_GAIN)

    def test_ramp_while_engine_suspended_is_queued(self, gate, engine, detector):
        engine.suspend()
        detector._force(VoiceState.SPEECH)

        assert gate.gate_open
        assert gate.node.gain.pending
        assert gate.state.current_gain == pytest.approx(GATE_FLOOR_GAIN)

        engine.resume()
        advance(engine, OPEN_RAMP_S)
        assert gate.state.current_gain == pytest.approx(1.0)

    def test_detach_stops_following(self, gate, detector):
        gate.detach()
        detector._force(VoiceState.SPEECH)
        assert not gate.gate_open
        assert len(detector.transitions) == 0
