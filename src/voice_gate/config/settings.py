import os
from pathlib import Path
from typing import Literal, Optional, Union
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from dotenv import load_dotenv
import logging

logger = logging.getLogger(__name__)

ENV_PREFIX = "VOICE_GATE_"


class PipelineConfig(BaseModel):
    auto_gain_control: bool = Field(default=True, description="Compress dynamics and apply post-gain")
    noise_suppression: bool = Field(default=True, description="Band-limit the signal to the speech band")
    echo_cancellation: bool = Field(default=False, description="Request native echo cancellation from the capture device")
    vad_enabled: bool = Field(default=True, description="Gate the microphone on detected speech")
    vad_strategy: Literal["heuristic", "model"] = Field(default="heuristic", description="Speech probability strategy")
    positive_threshold: float = Field(default=0.3, ge=0.0, le=1.0, description="Probability at/above which a frame counts as speech")
    negative_threshold: float = Field(default=0.25, ge=0.0, le=1.0, description="Probability at/below which a frame counts as silence")
    min_speech_frames: int = Field(default=3, ge=1, description="Consecutive speech frames needed to open the gate")
    min_silence_frames: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices("min_silence_frames", "redemption_frames"),
        description="Consecutive silence frames needed to close the gate",
    )
    smoothing_factor: float = Field(default=0.8, ge=0.0, lt=1.0, description="Exponential smoothing of the heuristic volume")
    sample_rate: int = Field(default=48000, ge=8000, le=192000, description="Capture sample rate (Hz)")
    channel_count: int = Field(default=1, ge=1, le=8, description="Capture channel count")
    device_id: Optional[Union[int, str]] = Field(default=None, description="Input device index or name; None for system default")
    frame_ms: int = Field(default=30, ge=10, le=100, description="Analysis tick length in milliseconds")
    acquire_timeout_s: Optional[float] = Field(default=10.0, gt=0.0, description="Give up on device acquisition after this long")
    rebuild_debounce_s: float = Field(default=0.05, ge=0.0, description="Settle time before a capture-level rebuild starts")
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "PipelineConfig":
        if self.negative_threshold > self.positive_threshold:
            raise ValueError(
                f"negative_threshold ({self.negative_threshold}) must not exceed "
                f"positive_threshold ({self.positive_threshold})"
            )
        return self

    @property
    def redemption_frames(self) -> int:
        return self.min_silence_frames

    @property
    def frame_size(self) -> int:
        """Samples per analysis tick."""
        return int(self.sample_rate * self.frame_ms / 1000)

    def updated(self, **changes) -> "PipelineConfig":
        """Return a validated copy with `changes` applied."""
        data = self.model_dump()
        data.update(changes)
        return PipelineConfig.model_validate(data)


def _env(name: str, default: str) -> str:
    return os.getenv(ENV_PREFIX + name, default)


def _env_bool(name: str, default: bool) -> bool:
    return _env(name, "true" if default else "false").lower() in ("true", "1", "yes")


def _env_device(name: str) -> Optional[Union[int, str]]:
    raw = _env(name, "").strip()
    if not raw or raw.lower() == "default":
        return None
    return int(raw) if raw.isdigit() else raw


def load_config(config_path: Optional[Path] = None) -> PipelineConfig:
    if config_path is None:
        config_path = Path(".env")

    if config_path.exists():
        load_dotenv(config_path)
        logger.info(f"Loaded environment variables from {config_path}")
    else:
        logger.warning(f"Config file {config_path} not found, using environment variables only")

    try:
        timeout = _env("ACQUIRE_TIMEOUT_S", "10.0")
        return PipelineConfig(
            auto_gain_control=_env_bool("AUTO_GAIN_CONTROL", True),
            noise_suppression=_env_bool("NOISE_SUPPRESSION", True),
            echo_cancellation=_env_bool("ECHO_CANCELLATION", False),
            vad_enabled=_env_bool("VAD_ENABLED", True),
            vad_strategy=_env("VAD_STRATEGY", "heuristic"),
            positive_threshold=float(_env("POSITIVE_THRESHOLD", "0.3")),
            negative_threshold=float(_env("NEGATIVE_THRESHOLD", "0.25")),
            min_speech_frames=int(_env("MIN_SPEECH_FRAMES", "3")),
            min_silence_frames=int(_env("MIN_SILENCE_FRAMES", "10")),
            smoothing_factor=float(_env("SMOOTHING_FACTOR", "0.8")),
            sample_rate=int(_env("SAMPLE_RATE", "48000")),
            channel_count=int(_env("CHANNEL_COUNT", "1")),
            device_id=_env_device("DEVICE_ID"),
            frame_ms=int(_env("FRAME_MS", "30")),
            acquire_timeout_s=float(timeout) if timeout.lower() != "none" else None,
            rebuild_debounce_s=float(_env("REBUILD_DEBOUNCE_S", "0.05")),
            log_level=_env("LOG_LEVEL", "INFO"),
        )
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise


def create_example_env_file(path: Path = Path(".env.example")):
    example_content = """# Conditioning chain
VOICE_GATE_AUTO_GAIN_CONTROL=true
VOICE_GATE_NOISE_SUPPRESSION=true

# Native echo cancellation (forces a stream rebuild when changed)
VOICE_GATE_ECHO_CANCELLATION=false

# Voice activity detection: heuristic or model (silero-vad)
VOICE_GATE_VAD_ENABLED=true
VOICE_GATE_VAD_STRATEGY=heuristic
VOICE_GATE_POSITIVE_THRESHOLD=0.3
VOICE_GATE_NEGATIVE_THRESHOLD=0.25
VOICE_GATE_MIN_SPEECH_FRAMES=3
VOICE_GATE_MIN_SILENCE_FRAMES=10
VOICE_GATE_SMOOTHING_FACTOR=0.8

# Capture device (index or name, empty for system default)
VOICE_GATE_DEVICE_ID=
VOICE_GATE_SAMPLE_RATE=48000
VOICE_GATE_CHANNEL_COUNT=1
VOICE_GATE_FRAME_MS=30

# Seconds to wait for the device before giving up
VOICE_GATE_ACQUIRE_TIMEOUT_S=10.0
VOICE_GATE_REBUILD_DEBOUNCE_S=0.05

# Logging level
VOICE_GATE_LOG_LEVEL=INFO
"""

    with open(path, "w") as f:
        f.write(example_content)

    logger.info(f"Created example environment file at {path}")


def setup_logging(log_level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
