from pathlib import Path
from typing import Protocol

from local_ai_toolkit.domain.models import AudioFormat, AudioFrame, Segment


class RecognitionSession(Protocol):
    """Engine session fed incrementally with live audio."""

    def feed(self, frame: AudioFrame) -> str | None:
        """Append a frame. Returns a partial hypothesis when the engine has one."""
        ...

    def finish(self) -> list[Segment]:
        """Signal end of audio and block until the final result is available."""
        ...

    def cancel(self) -> None:
        ...


class SpeechToTextPort(Protocol):
    """Opaque speech recognition engine. Not safe for concurrent calls."""

    def transcribe_file(self, audio_path: Path, language: str) -> list[Segment]:
        """Transcribe a complete audio file.

        Raises:
            UnsupportedInputError: The file could not be decoded.
            EngineError: Recognition failed.
        """
        ...

    def supports_language(self, language: str) -> bool:
        ...

    def supported_languages(self) -> list[str]:
        ...

    def can_run_locally(self) -> bool:
        """True when recognition needs no network access at all."""
        ...

    def open_session(self, language: str, audio_format: AudioFormat) -> RecognitionSession:
        ...
