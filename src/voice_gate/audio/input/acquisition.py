"""Raw microphone stream acquisition."""

from __future__ import annotations

import queue
import time
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional

import numpy as np
import sounddevice as sd

from ...core.errors import AcquisitionError, AcquisitionFailure
from ...core.shutdown import StopSignal

from .types import AcquisitionConstraints, AudioFrame, DeviceId, StreamInfo

logger = logging.getLogger(__name__)

_CANCEL_POLL_S = 0.05

_DTYPE_MAP = {
    "float32": np.float32,
    "int16": np.int16,
    "int32": np.int32,
}

_PERMISSION_HINTS = ("permission", "denied", "not authorized", "access")
_MISSING_HINTS = ("invalid device", "no such device", "device unavailable", "-9996", "-9985")


def _classify_portaudio_error(error: Exception) -> AcquisitionFailure:
    text = str(error).lower()
    if any(hint in text for hint in _PERMISSION_HINTS):
        return AcquisitionFailure.PERMISSION_DENIED
    if any(hint in text for hint in _MISSING_HINTS):
        return AcquisitionFailure.DEVICE_NOT_FOUND
    return AcquisitionFailure.DEVICE_ERROR


class RawStream:
    """
    Exclusive handle on one opened hardware input stream.

    The sounddevice callback only wraps samples into AudioFrame and enqueues them;
    all analysis happens on the pipeline tick.
    """

    def __init__(
        self,
        info: StreamInfo,
        constraints: AcquisitionConstraints,
        frames_queue: "queue.Queue[AudioFrame]",
        generation: int,
    ):
        self.info = info
        self.constraints = constraints
        self.generation = generation
        self._frames_queue = frames_queue
        self._stream: Optional[sd.InputStream] = None
        self._stopped = False
        self.dropped_frames = 0

    @property
    def active(self) -> bool:
        return self._stream is not None and not self._stopped

    def open(self) -> None:
        fmt = self.constraints.audio_format
        blocksize = self.constraints.frame.frame_size(fmt.sample_rate)
        dtype = _DTYPE_MAP.get(fmt.dtype, np.float32)

        stream = sd.InputStream(
            callback=self._callback,
            samplerate=fmt.sample_rate,
            channels=fmt.channels,
            blocksize=blocksize,
            dtype=dtype,
            device=self.info.device_id,
        )
        try:
            stream.start()
        except Exception:
            stream.close()
            raise
        self._stream = stream

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.warning(f"Audio callback status: {status}")
        if self._stopped:
            return

        if indata.shape[1] == 1:
            pcm = indata[:, 0].astype(np.float32)
        else:
            pcm = indata.astype(np.float32)

        frame = AudioFrame(
            pcm=pcm,
            sample_rate=self.info.sample_rate,
            timestamp_s=time.time(),
            generation=self.generation,
        )
        try:
            self._frames_queue.put_nowait(frame)
        except queue.Full:
            self.dropped_frames += 1

    def stop(self) -> None:
        """Stop and close the hardware stream. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            if stream.active:
                stream.stop()
            stream.close()
        except Exception as e:
            logger.warning("Error closing input stream: %s", e)
        logger.info("Released input device %s (generation %d)", self.info.device_name, self.generation)


class StreamAcquirer:
    """
    Opens raw hardware streams with native processing disabled.

    Opening runs on a helper thread so a hanging device or permission prompt can be
    abandoned through the caller's timeout or cancel signal.
    """

    def __init__(self):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="AcquireThread")

    def resolve_device(self, device_id: DeviceId) -> StreamInfo:
        try:
            if device_id is None:
                device = sd.query_devices(kind="input")
            else:
                device = sd.query_devices(device_id, kind="input")
        except ValueError as e:
            raise AcquisitionError(
                f"Input device {device_id!r} not found: {e}",
                reason=AcquisitionFailure.DEVICE_NOT_FOUND,
                device_id=device_id,
            ) from e
        except sd.PortAudioError as e:
            raise AcquisitionError(
                f"No input device available: {e}",
                reason=_classify_portaudio_error(e),
                device_id=device_id,
            ) from e

        return StreamInfo(
            device_id=device_id,
            device_name=device["name"],
            sample_rate=int(device.get("default_samplerate", 0) or 0),
            channels=int(device["max_input_channels"]),
        )

    def _open(self, stream: RawStream) -> RawStream:
        try:
            stream.open()
        except (sd.PortAudioError, ValueError) as e:
            raise AcquisitionError(
                f"Could not open input stream on {stream.info.device_name}: {e}",
                reason=_classify_portaudio_error(e),
                device_id=stream.info.device_id,
            ) from e
        return stream

    def acquire(
        self,
        device_id: DeviceId,
        constraints: AcquisitionConstraints,
        frames_queue: "queue.Queue[AudioFrame]",
        generation: int = 0,
        cancel: Optional[StopSignal] = None,
        timeout_s: Optional[float] = None,
    ) -> RawStream:
        """Open a raw stream or raise AcquisitionError."""
        info = self.resolve_device(device_id)
        fmt = constraints.audio_format
        if info.channels and fmt.channels > info.channels:
            raise AcquisitionError(
                f"Device {info.device_name} has {info.channels} input channel(s), {fmt.channels} requested",
                reason=AcquisitionFailure.DEVICE_ERROR,
                device_id=device_id,
            )

        info.sample_rate = fmt.sample_rate
        info.channels = fmt.channels
        # PortAudio exposes no native voice processing, so these record the request only.
        info.applied = {
            "echo_cancellation": constraints.echo_cancellation,
            "noise_suppression": constraints.noise_suppression,
            "auto_gain_control": constraints.auto_gain_control,
        }
        if constraints.echo_cancellation:
            logger.info("Echo cancellation requested for %s", info.device_name)

        stream = RawStream(info, constraints, frames_queue, generation)
        future = self._executor.submit(self._open, stream)
        deadline = None if timeout_s is None else time.monotonic() + timeout_s

        while True:
            if cancel is not None and cancel.is_set():
                self._abandon(future)
                raise AcquisitionError(
                    "Acquisition cancelled", reason=AcquisitionFailure.CANCELLED, device_id=device_id
                )
            wait_s = _CANCEL_POLL_S
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._abandon(future)
                    raise AcquisitionError(
                        f"Timed out after {timeout_s:.1f}s opening {info.device_name}",
                        reason=AcquisitionFailure.TIMEOUT,
                        device_id=device_id,
                    )
                wait_s = min(wait_s, remaining)
            try:
                opened = future.result(timeout=wait_s)
            except FutureTimeout:
                continue
            logger.info(
                "Acquired %s (%d Hz, %d ch, generation %d)",
                info.device_name, info.sample_rate, info.channels, generation,
            )
            return opened

    @staticmethod
    def _abandon(future: "Future[RawStream]") -> None:
        # If the open completes after we gave up, release the device right away.
        def _release(done: "Future[RawStream]") -> None:
            if not done.cancelled() and done.exception() is None:
                done.result().stop()

        if not future.cancel():
            future.add_done_callback(_release)

    def close(self) -> None:
        self._executor.shutdown(wait=False)


def list_input_devices() -> list[dict]:
    """Input-capable devices as reported by sounddevice."""
    devices = []
    for index, device in enumerate(sd.query_devices()):
        if device["max_input_channels"] > 0:
            devices.append({
                "id": index,
                "name": device["name"],
                "channels": device["max_input_channels"],
                "default_samplerate": device["default_samplerate"],
            })
    return devices
