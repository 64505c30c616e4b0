import itertools
import queue
from threading import Lock
from typing import Any

import numpy as np
import sounddevice

from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.domain.models import AudioFormat, AudioFrame
from local_ai_toolkit.ports.engine import DevicePermissionError, EngineUnavailableError

logger = get_logger("adapters.audio.sddevice")

_PERMISSION_MARKERS = ("permission", "denied", "not authorized", "unauthorized", "access")


class _QueueReader:
    """Bounded per-subscriber queue; drops the oldest frame when full."""

    def __init__(self, name: str, max_frames: int, on_close: Any) -> None:
        self.name = name
        self._queue: queue.Queue[AudioFrame | None] = queue.Queue(maxsize=max_frames)
        self._closed = False
        self._on_close = on_close

    def push(self, frame: AudioFrame) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(frame)
        except queue.Full:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                pass
            logger.warning("Subscriber '%s' queue full; dropped oldest frame", self.name)
            try:
                self._queue.put_nowait(frame)
            except queue.Full:
                pass

    def read(self, timeout_seconds: float | None = None) -> AudioFrame | None:
        if self._closed:
            return None
        try:
            if timeout_seconds == 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout_seconds)
        except queue.Empty:
            return None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_close(self)
        # wake a blocked read()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass


class SoundDeviceAudioStreamAdapter:
    """Microphone input via sounddevice, fanned out to subscribers."""

    def __init__(self, audio_format: AudioFormat, device: int | str | None = None) -> None:
        self._format = audio_format
        self._device = device
        self._stream: sounddevice.InputStream | None = None
        self._lock = Lock()
        self._readers: list[_QueueReader] = []
        self._sequence = itertools.count()

    def start(self) -> None:
        with self._lock:
            if self._stream is not None:
                return
            try:
                stream = sounddevice.InputStream(
                    samplerate=self._format.sample_rate,
                    channels=self._format.channels,
                    blocksize=self._format.blocksize,
                    dtype=self._format.dtype,
                    device=self._device,
                    callback=self._callback,
                )
                stream.start()
            except sounddevice.PortAudioError as exc:
                message = str(exc)
                if any(marker in message.lower() for marker in _PERMISSION_MARKERS):
                    raise DevicePermissionError(f"Microphone access denied: {message}") from exc
                raise EngineUnavailableError(f"Cannot open microphone: {message}") from exc
            self._stream = stream
            logger.info(
                "Microphone stream started: rate=%s channels=%s blocksize=%s",
                self._format.sample_rate,
                self._format.channels,
                self._format.blocksize,
            )

    def stop(self) -> None:
        with self._lock:
            stream = self._stream
            self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        except sounddevice.PortAudioError as exc:
            raise EngineUnavailableError(f"Cannot stop microphone: {exc}") from exc
        finally:
            stream.close()
        logger.info("Microphone stream stopped")

    def is_running(self) -> bool:
        return self._stream is not None

    def audio_format(self) -> AudioFormat:
        return self._format

    def subscribe(self, *, name: str, max_frames: int = 1024) -> _QueueReader:
        reader = _QueueReader(name=name, max_frames=max_frames, on_close=self._unsubscribe)
        with self._lock:
            self._readers.append(reader)
        return reader

    def _unsubscribe(self, reader: _QueueReader) -> None:
        with self._lock:
            if reader in self._readers:
                self._readers.remove(reader)

    def _callback(self, indata: np.ndarray, frames: int, time: Any, status: Any) -> None:
        if status:
            logger.warning("sounddevice status: %s", status)
        frame = AudioFrame(data=indata.copy(), format=self._format, sequence=next(self._sequence))
        with self._lock:
            readers = list(self._readers)
        for reader in readers:
            reader.push(frame)
