from pathlib import Path
from typing import Callable, Protocol

import numpy as np

from local_ai_toolkit.domain.models import AudioExportFormat, Voice


class SpeechSynthesisPort(Protocol):
    """Opaque speech synthesis engine. Not safe for concurrent calls."""

    def voices(self) -> list[Voice]:
        ...

    def render_to_wav(
        self,
        text: str,
        output_path: Path,
        *,
        voice_id: str | None,
        words_per_minute: int,
        volume: float,
    ) -> None:
        """Render `text` into a WAV file at `output_path`.

        Raises:
            EngineError: Nothing was rendered.
        """
        ...


class AudioCodecPort(Protocol):

    def encode_file(self, src: Path, dst: Path, fmt: AudioExportFormat, *, pitch: float = 1.0) -> Path:
        """Encode `src` into the `fmt` container at `dst`, shifting pitch by the given factor."""
        ...

    def decode_file(self, src: Path, *, pitch: float = 1.0) -> tuple[np.ndarray, int]:
        """Decode `src` into mono float32 samples and return them with the sample rate."""
        ...


class AudioPlaybackPort(Protocol):

    def play(self, samples: np.ndarray, sample_rate: int, on_finished: Callable[[], None]) -> None:
        """Start playback and return immediately.

        `on_finished` is invoked exactly once, from any thread, when playback
        completes or is stopped.
        """
        ...

    def stop(self) -> None:
        """Abort playback. No-op when nothing is playing."""
        ...
