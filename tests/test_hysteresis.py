"""Tests for the shared voice hysteresis state machine."""

import pytest

from voice_gate.core.events import VoiceState
from voice_gate.vad.hysteresis import HysteresisStateMachine


@pytest.fixture
def machine():
    return HysteresisStateMachine(
        positive_threshold=0.3,
        negative_threshold=0.25,
        min_speech_frames=3,
        min_silence_frames=10,
    )


def run(machine, probabilities):
    """Feed probabilities; return (frame_number, transition) pairs."""
    transitions = []
    for i, p in enumerate(probabilities, start=1):
        t = machine.update(p)
        if t is not None:
            transitions.append((i, t))
    return transitions


class TestHysteresis:
    @pytest.mark.parametrize("n", [1, 3, 5])
    def test_speech_fires_exactly_at_frame_n(self, n):
        machine = HysteresisStateMachine(0.3, 0.25, n, 10)
        transitions = run(machine, [1.0] * (n + 20))

        assert len(transitions) == 1
        frame, transition = transitions[0]
        assert frame == n
        assert transition.previous is VoiceState.SILENCE
        assert transition.current is VoiceState.SPEECH

    def test_no_transition_before_n_frames(self, machine):
        assert run(machine, [0.9, 0.9]) == []
        assert machine.state is VoiceState.SILENCE

    @pytest.mark.parametrize("m", [1, 4, 10])
    def test_silence_fires_exactly_at_frame_m(self, m):
        machine = HysteresisStateMachine(0.3, 0.25, 3, m)
        run(machine, [1.0] * 3)
        assert machine.is_speaking

        transitions = run(machine, [0.0] * (m + 20))
        assert len(transitions) == 1
        frame, transition = transitions[0]
        assert frame == m
        assert transition.current is VoiceState.SILENCE

    def test_threshold_boundaries_are_inclusive(self, machine):
        run(machine, [0.3, 0.3, 0.3])
        assert machine.is_speaking
        run(machine, [0.25] * 10)
        assert not machine.is_speaking

    def test_interrupted_run_does_not_flap(self, machine):
        assert run(machine, [0.9, 0.9, 0.0, 0.9, 0.9, 0.0] * 5) == []
        assert machine.state is VoiceState.SILENCE

    def test_frames_between_thresholds_break_both_runs(self, machine):
        assert run(machine, [0.9, 0.9, 0.27, 0.9, 0.9]) == []
        run(machine, [0.9])
        assert machine.is_speaking

        assert run(machine, [0.0] * 9 + [0.27] + [0.0] * 9) == []
        assert machine.is_speaking

    def test_speech_during_speech_resets_silence_count(self, machine):
        run(machine, [1.0] * 3)
        run(machine, [0.0] * 9 + [1.0] + [0.0] * 9)
        assert machine.is_speaking
        assert machine.silence_frame_count == 9

    def test_reset_clears_all_state(self, machine):
        run(machine, [1.0] * 5)
        machine.reset()
        assert machine.state is VoiceState.SILENCE
        assert machine.speech_frame_count == 0
        assert machine.silence_frame_count == 0
        assert machine.frame_index == 0

    def test_configure_same_values_is_noop(self, machine):
        assert machine.configure(0.3, 0.25, 3, 10) is False
        assert machine.configure(0.5, 0.25, 3, 10) is True
        assert machine.positive_threshold == 0.5

    def test_force_changes_state_once(self, machine):
        first = machine.force(VoiceState.SPEECH)
        second = machine.force(VoiceState.SPEECH)
        assert first is not None and first.current is VoiceState.SPEECH
        assert second is None

    def test_identical_sequences_after_reset_behave_identically(self, machine):
        sequence = [0.9] * 4 + [0.0] * 12 + [0.5, 0.9, 0.9, 0.1]
        first = [(f, t.previous, t.current) for f, t in run(machine, sequence)]
        machine.reset()
        second = [(f, t.previous, t.current) for f, t in run(machine, sequence)]
        assert first == second
        assert len(first) == 3
