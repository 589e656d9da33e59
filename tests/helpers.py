"""Shared fakes and signal generators for the pipeline tests."""

import numpy as np

from voice_gate.audio.input.acquisition import RawStream
from voice_gate.audio.input.types import AnalysisFrame, AudioFrame, StreamInfo
from voice_gate.core.errors import AcquisitionError, AcquisitionFailure
from voice_gate.output.publisher import Transport


def generate_silence_frame(sample_rate=48000, frame_ms=30):
    """Generate a silence audio frame."""
    n_samples = int(sample_rate * frame_ms / 1000)
    return np.zeros(n_samples, dtype=np.float32)


def generate_speech_frame(sample_rate=48000, frame_ms=30, frequency=500, amplitude=0.5, start=0):
    """Generate a speech-like audio frame (sine wave in speech frequency range)."""
    n_samples = int(sample_rate * frame_ms / 1000)
    t = (np.arange(n_samples) + start) / sample_rate
    signal = amplitude * np.sin(2 * np.pi * frequency * t)
    return signal.astype(np.float32)


def analysis_frame(pcm, sample_rate=48000, bins=2049):
    """Analysis frame with a flat, empty spectrum."""
    return AnalysisFrame(
        time_domain=pcm,
        frequency_domain=np.zeros(bins, dtype=np.float32),
        sample_rate=sample_rate,
    )


class FakeAcquirer:
    """
    Stands in for StreamAcquirer without touching sounddevice.

    `failures` is consumed one entry per acquire() call; None means succeed.
    """

    def __init__(self, failures=None, device_name="Fake Mic"):
        self.failures = list(failures or [])
        self.device_name = device_name
        self.calls = []
        self.open_at_acquire = []
        self.streams = []
        self.closed = False

    def acquire(self, device_id, constraints, frames_queue, generation=0, cancel=None, timeout_s=None):
        self.calls.append((device_id, constraints, generation))
        self.open_at_acquire.append(len(self.open_streams()))
        failure = self.failures.pop(0) if self.failures else None
        if failure is not None:
            raise failure
        if cancel is not None and cancel.is_set():
            raise AcquisitionError("Acquisition cancelled", reason=AcquisitionFailure.CANCELLED)
        info = StreamInfo(
            device_id=device_id,
            device_name=self.device_name,
            sample_rate=constraints.audio_format.sample_rate,
            channels=constraints.audio_format.channels,
            applied={"echo_cancellation": constraints.echo_cancellation},
        )
        stream = RawStream(info, constraints, frames_queue, generation)
        self.streams.append(stream)
        return stream

    def open_streams(self):
        return [s for s in self.streams if not s._stopped]

    def close(self):
        self.closed = True


class FakeTransport(Transport):
    def __init__(self, reject=False):
        self.reject = reject
        self.published = []
        self.unpublished = 0
        self.errors = []

    def publish(self, track):
        if self.reject:
            raise RuntimeError("track rejected")
        self.published.append(track)

    def unpublish(self):
        self.unpublished += 1

    def notify_error(self, error):
        self.errors.append(error)


def feed(pipeline, blocks):
    """Tick the pipeline synchronously with the current handle's generation."""
    results = []
    for pcm in blocks:
        handle = pipeline.handle
        frame = AudioFrame(
            pcm=pcm,
            sample_rate=handle.config.sample_rate,
            timestamp_s=0.0,
            generation=handle.generation,
        )
        results.append(pipeline.tick(frame))
    return results
