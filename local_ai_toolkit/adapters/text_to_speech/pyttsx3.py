from pathlib import Path
from typing import Any

import pyttsx3

from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.domain.models import Voice, VoiceQuality
from local_ai_toolkit.ports.engine import EngineError, EngineUnavailableError

logger = get_logger("adapters.text_to_speech.pyttsx3")

_ENHANCED_MARKERS = ("enhanced", "premium", "neural")


class Pyttsx3Adapter:
    """Speech synthesis through the platform driver picked by pyttsx3.

    The pyttsx3 engine is bound to the thread that created it, so it is
    created lazily on first use; callers must invoke this adapter from a
    single thread.
    """

    def __init__(self, driver_name: str | None = None) -> None:
        self.driver_name = driver_name
        self._engine: Any = None

    def _lazy_engine(self) -> Any:
        if self._engine is None:
            try:
                self._engine = pyttsx3.init(driverName=self.driver_name)
            except (ImportError, RuntimeError, OSError) as exc:
                raise EngineUnavailableError(f"Speech synthesis driver unavailable: {exc}") from exc
        return self._engine

    def voices(self) -> list[Voice]:
        engine = self._lazy_engine()
        return [self._to_voice(v) for v in engine.getProperty("voices") or []]

    def render_to_wav(
        self,
        text: str,
        output_path: Path,
        *,
        voice_id: str | None,
        words_per_minute: int,
        volume: float,
    ) -> None:
        engine = self._lazy_engine()
        try:
            if voice_id:
                engine.setProperty("voice", voice_id)
            engine.setProperty("rate", words_per_minute)
            engine.setProperty("volume", volume)
            engine.save_to_file(text, str(output_path))
            engine.runAndWait()
        except RuntimeError as exc:
            raise EngineError(f"Speech synthesis failed: {exc}") from exc

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise EngineError("Speech synthesis produced no audio")
        logger.debug("Rendered %d chars to %s", len(text), output_path)

    @staticmethod
    def _to_voice(raw: Any) -> Voice:
        identifier = str(raw.id)
        name = str(getattr(raw, "name", None) or identifier)
        languages = getattr(raw, "languages", None) or []
        language = _normalize_language(languages[0]) if languages else ""
        quality: VoiceQuality = "standard"
        if any(marker in identifier.lower() for marker in _ENHANCED_MARKERS):
            quality = "enhanced"
        return Voice(identifier=identifier, name=name, language=language, quality=quality)


def _normalize_language(raw: Any) -> str:
    """espeak reports b'\\x05en-us'; other drivers report 'en_US'."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="ignore")
    value = str(raw).strip().lstrip("\x00\x01\x02\x03\x04\x05\x06\x07\x08").replace("_", "-")
    parts = value.split("-")
    if len(parts) >= 2 and len(parts[-1]) == 2:
        parts[-1] = parts[-1].upper()
    return "-".join(parts)
