from typing import Protocol

from local_ai_toolkit.domain.models import AudioFormat, AudioFrame


class AudioStreamReader(Protocol):
    """Consumer handle with its own frame queue."""

    def read(self, timeout_seconds: float | None = None) -> AudioFrame | None:
        """Return the next frame, or None on timeout or after close().

        Args:
            timeout_seconds: None blocks indefinitely, 0 returns immediately.
        """
        ...

    def close(self) -> None:
        ...


class AudioStreamPort(Protocol):
    """Microphone capture source distributing frames to subscribers."""

    def start(self) -> None:
        """Open the input device.

        Raises:
            DevicePermissionError: The OS denied microphone access.
            EngineUnavailableError: No usable input device.
        """
        ...

    def stop(self) -> None:
        ...

    def is_running(self) -> bool:
        ...

    def audio_format(self) -> AudioFormat:
        ...

    def subscribe(self, *, name: str, max_frames: int = 1024) -> AudioStreamReader:
        """Create a consumer receiving every frame captured after subscription.

        Args:
            name: Subscriber label used in logs.
            max_frames: Frames buffered before the oldest is dropped.
        """
        ...
