from threading import Lock
from typing import Any, Callable

import numpy as np
import sounddevice

from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.ports.engine import EngineUnavailableError

logger = get_logger("adapters.audio.playback")


class SoundDevicePlaybackAdapter:
    """Plays a mono float32 buffer; completion is reported through finished_callback."""

    def __init__(self, device: int | str | None = None, blocksize: int = 1024) -> None:
        self._device = device
        self._blocksize = blocksize
        self._lock = Lock()
        self._stream: sounddevice.OutputStream | None = None

    def play(self, samples: np.ndarray, sample_rate: int, on_finished: Callable[[], None]) -> None:
        data = np.ascontiguousarray(samples, dtype=np.float32).reshape(-1, 1)
        position = 0

        def _fill(outdata: np.ndarray, frames: int, time: Any, status: Any) -> None:
            nonlocal position
            if status:
                logger.warning("playback status: %s", status)
            chunk = data[position : position + frames]
            outdata[: len(chunk)] = chunk
            if len(chunk) < frames:
                outdata[len(chunk) :] = 0
                raise sounddevice.CallbackStop
            position += frames

        with self._lock:
            self._close_locked()
            try:
                stream = sounddevice.OutputStream(
                    samplerate=sample_rate,
                    channels=1,
                    dtype="float32",
                    blocksize=self._blocksize,
                    device=self._device,
                    callback=_fill,
                    finished_callback=on_finished,
                )
                stream.start()
            except sounddevice.PortAudioError as exc:
                raise EngineUnavailableError(f"Cannot open audio output: {exc}") from exc
            self._stream = stream

    def stop(self) -> None:
        with self._lock:
            self._close_locked()

    def _close_locked(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.abort()
        finally:
            stream.close()
