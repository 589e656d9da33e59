import argparse
import logging
from pathlib import Path
from typing import Optional

import numpy as np

from .audio.input.acquisition import list_input_devices
from .config.settings import create_example_env_file, load_config, setup_logging
from .core.errors import PipelineError
from .core.events import PipelineStateChange, VoiceState, VoiceTransition
from .core.shutdown import GracefulShutdown
from .core.worker import QueueWorker
from .output.publisher import ProcessedTrack, Transport
from .pipeline import MicPipeline

logger = logging.getLogger("VoiceGate")


class TrackDrain(QueueWorker[np.ndarray]):
    """Consumes a published track so the pipeline never backs up."""

    def __init__(self, *, stop_signal: GracefulShutdown, track: ProcessedTrack):
        super().__init__(name=f"TrackDrain-{track.track_id}", stop_signal=stop_signal, input_queue=track.queue)
        self.track = track
        self.blocks = 0
        self.peak = 0.0

    def handle(self, item: np.ndarray) -> None:
        self.blocks += 1
        if item.size:
            self.peak = max(self.peak, float(np.max(np.abs(item))))


class LoggingTransport(Transport):
    """Local stand-in for a conferencing transport: drains the track and logs events."""

    def __init__(self):
        self._drain: Optional[TrackDrain] = None
        self._drain_stop: Optional[GracefulShutdown] = None

    def publish(self, track: ProcessedTrack) -> None:
        self.unpublish()
        self._drain_stop = GracefulShutdown("track-drain")
        self._drain = TrackDrain(stop_signal=self._drain_stop, track=track)
        self._drain.start()
        logger.info(f"Transport: publishing track {track.track_id} at {track.sample_rate} Hz")

    def unpublish(self) -> None:
        if self._drain is not None:
            self._drain.stop()
            logger.info(f"Transport: unpublished track {self._drain.track.track_id} "
                        f"({self._drain.blocks} blocks, peak {self._drain.peak:.3f})")
        self._drain = None
        self._drain_stop = None

    def notify_error(self, error: PipelineError) -> None:
        logger.error(f"Transport: pipeline reported fatal error: {error}")


def _log_state(change: PipelineStateChange) -> None:
    print(f"[STATE] {change.previous.name} -> {change.current.name}")


def _log_voice(transition: VoiceTransition) -> None:
    label = "speaking" if transition.current is VoiceState.SPEECH else "silent"
    print(f"[VOICE] {label} (frame {transition.frame_index})")


def _log_error(error: PipelineError) -> None:
    print(f"[ERROR] {type(error).__name__}: {error}")


def _print_devices() -> None:
    devices = list_input_devices()
    if not devices:
        print("No input devices found.")
        return
    for device in devices:
        print(f"  [{device['id']}] {device['name']} "
              f"({device['channels']} ch, {device['default_samplerate']:.0f} Hz)")


def _parse_device(value: str):
    return int(value) if value.isdigit() else value


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Voice-gated microphone pipeline")
    parser.add_argument("--config", type=str, help="Path to config file", default=".env")
    parser.add_argument("--create-config", action="store_true", help="Create example config file")
    parser.add_argument("--list-devices", action="store_true", help="List input devices and exit")
    parser.add_argument("--device", type=str, help="Input device index or name")
    parser.add_argument("--strategy", choices=["heuristic", "model"], help="Voice detection strategy")
    parser.add_argument("--stats-interval", type=float, default=5.0, help="Seconds between debug snapshots")

    args = parser.parse_args(argv)

    if args.create_config:
        create_example_env_file()
        print("Example configuration file created at .env.example")
        print("Copy it to .env and adjust the settings.")
        return 0

    if args.list_devices:
        _print_devices()
        return 0

    try:
        config = load_config(Path(args.config) if args.config else None)
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1

    overrides = {}
    if args.device is not None:
        overrides["device_id"] = _parse_device(args.device)
    if args.strategy is not None:
        overrides["vad_strategy"] = args.strategy
    if overrides:
        config = config.updated(**overrides)

    setup_logging(config.log_level)

    pipeline = MicPipeline(config, LoggingTransport())
    pipeline.state_changes.subscribe(_log_state)
    pipeline.voice_changes.subscribe(_log_voice)
    pipeline.errors.subscribe(_log_error)

    if not pipeline.start():
        print("Microphone could not be started; see the error above.")
        pipeline.close()
        return 1

    print("\n=== Voice gate running ===")
    print("Press Ctrl+C to stop.")
    print("==========================\n")

    shutdown = GracefulShutdown()
    try:
        while not shutdown.wait(args.stats_interval):
            info = pipeline.get_debug_info()
            vad = info.get("vad") or {}
            gate = info.get("gate") or {}
            logger.info(
                "state=%s gate=%.4f (%s) prob=%.2f volume=%.3f stale=%d",
                info["state"],
                gate.get("current_gain", 0.0),
                "open" if gate.get("open") else "closed",
                vad.get("probability", 0.0),
                vad.get("smoothed_volume", 0.0),
                info["stale_frames"],
            )
    except KeyboardInterrupt:
        print("\nKeyboardInterrupt detected. Shutting down...")
    finally:
        pipeline.close()
        print("Voice gate stopped.")
    return 0
