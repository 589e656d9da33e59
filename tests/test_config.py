import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from voice_gate.config.settings import PipelineConfig, create_example_env_file, load_config


class TestConfig:
    def test_default_config(self):
        config = PipelineConfig()
        assert config.auto_gain_control is True
        assert config.noise_suppression is True
        assert config.echo_cancellation is False
        assert config.vad_enabled is True
        assert config.vad_strategy == "heuristic"
        assert config.positive_threshold == 0.3
        assert config.negative_threshold == 0.25
        assert config.min_speech_frames == 3
        assert config.min_silence_frames == 10
        assert config.sample_rate == 48000
        assert config.channel_count == 1

    def test_frame_size_follows_sample_rate(self):
        config = PipelineConfig(sample_rate=16000, frame_ms=30)
        assert config.frame_size == 480

    def test_redemption_frames_alias(self):
        config = PipelineConfig(redemption_frames=7)
        assert config.min_silence_frames == 7
        assert config.redemption_frames == 7

    def test_negative_threshold_above_positive_rejected(self):
        with pytest.raises(ValidationError):
            PipelineConfig(positive_threshold=0.3, negative_threshold=0.5)

    @pytest.mark.parametrize("field, value", [
        ("positive_threshold", 1.5),
        ("negative_threshold", -0.1),
        ("min_speech_frames", 0),
        ("channel_count", 0),
        ("sample_rate", 1000),
        ("vad_strategy", "neural"),
    ])
    def test_out_of_range_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            PipelineConfig(**{field: value})

    def test_config_is_frozen(self):
        config = PipelineConfig()
        with pytest.raises(ValidationError):
            config.sample_rate = 16000

    def test_updated_returns_validated_copy(self):
        config = PipelineConfig()
        updated = config.updated(echo_cancellation=True)
        assert updated.echo_cancellation is True
        assert config.echo_cancellation is False
        with pytest.raises(ValidationError):
            config.updated(negative_threshold=0.9)

    @patch.dict(os.environ, {
        "VOICE_GATE_VAD_STRATEGY": "model",
        "VOICE_GATE_POSITIVE_THRESHOLD": "0.6",
        "VOICE_GATE_NEGATIVE_THRESHOLD": "0.4",
        "VOICE_GATE_NOISE_SUPPRESSION": "false",
        "VOICE_GATE_DEVICE_ID": "3",
    })
    def test_load_config_from_env(self):
        config = load_config(Path("does-not-exist.env"))
        assert config.vad_strategy == "model"
        assert config.positive_threshold == 0.6
        assert config.negative_threshold == 0.4
        assert config.noise_suppression is False
        assert config.device_id == 3

    def test_config_from_temp_file(self, setup_test_env):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.env', delete=False) as f:
            f.write("VOICE_GATE_DEVICE_ID=USB Headset\n")
            f.write("VOICE_GATE_MIN_SILENCE_FRAMES=15\n")
            f.write("VOICE_GATE_ACQUIRE_TIMEOUT_S=none\n")
            temp_path = f.name

        try:
            config = load_config(Path(temp_path))
            assert config.device_id == "USB Headset"
            assert config.min_silence_frames == 15
            assert config.acquire_timeout_s is None
        finally:
            os.unlink(temp_path)

    def test_create_example_env_file(self, tmp_path):
        path = tmp_path / ".env.example"
        create_example_env_file(path)
        content = path.read_text()
        assert "VOICE_GATE_POSITIVE_THRESHOLD=0.3" in content
        assert "VOICE_GATE_VAD_STRATEGY=heuristic" in content
