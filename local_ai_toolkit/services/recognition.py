import asyncio
import io
import time
from dataclasses import dataclass, field

from PIL import Image

from local_ai_toolkit.core.errors import CapabilityError, ErrorKind
from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.domain.models import HistoryRecord, RecognitionLevel, RecognitionResult
from local_ai_toolkit.ports.engine import EngineUnavailableError
from local_ai_toolkit.ports.history import HistorySinkPort
from local_ai_toolkit.ports.ocr import TextRecognitionPort
from local_ai_toolkit.services.serial import EngineLane, emit_history, preview

logger = get_logger("services.recognition")

FALLBACK_LANGUAGE = "en-US"

KNOWN_LANGUAGES = (
    "zh-Hans",
    "zh-Hant",
    "en-US",
    "ja-JP",
    "ko-KR",
    "fr-FR",
    "de-DE",
    "es-ES",
    "it-IT",
    "pt-BR",
    "ru-RU",
)


def _family(tag: str) -> str:
    return tag.replace("_", "-").split("-")[0].lower()


def language_preferences(hint: str) -> list[str]:
    """Hint first, then its family siblings, generic fallback last.

    >>> language_preferences("zh-Hans")
    ['zh-Hans', 'zh-Hant', 'en-US']
    """
    ordered = [hint]
    ordered += [tag for tag in KNOWN_LANGUAGES if _family(tag) == _family(hint)]
    ordered.append(FALLBACK_LANGUAGE)

    seen: set[str] = set()
    result: list[str] = []
    for tag in ordered:
        key = tag.lower()
        if key not in seen:
            seen.add(key)
            result.append(tag)
    return result


def decode_image(image_bytes: bytes) -> Image.Image:
    if not image_bytes:
        raise CapabilityError(ErrorKind.INVALID_IMAGE, "No image data provided")
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise CapabilityError(ErrorKind.INVALID_IMAGE, "Invalid image data", cause=exc) from exc
    return image


@dataclass(slots=True)
class RecognitionService:
    """Serialized access point to the text recognition engine."""

    engine: TextRecognitionPort
    default_language: str = FALLBACK_LANGUAGE
    default_level: RecognitionLevel = RecognitionLevel.ACCURATE
    history: HistorySinkPort | None = None
    _lane: EngineLane = field(default_factory=lambda: EngineLane("ocr-engine"), init=False)

    async def recognize(
        self,
        image_bytes: bytes,
        language_hint: str | None = None,
        level: RecognitionLevel | str | None = None,
    ) -> RecognitionResult:
        language = language_hint or self.default_language
        started = time.monotonic()
        try:
            resolved_level = self._resolve_level(level)
            image = await asyncio.to_thread(decode_image, image_bytes)
            result = await self._lane.run(self._recognize_on_engine, image, language, resolved_level)
        except CapabilityError as exc:
            logger.warning("Recognition failed: %s", exc)
            emit_history(
                self.history,
                HistoryRecord(kind="ocr", content=f"{len(image_bytes)} bytes", result=exc.message, succeeded=False),
            )
            raise

        logger.info(
            "Recognized %d blocks (language=%s, level=%s) in %.0fms",
            len(result.blocks),
            language,
            resolved_level.value,
            (time.monotonic() - started) * 1000,
        )
        emit_history(
            self.history,
            HistoryRecord(
                kind="ocr",
                content=f"{len(image_bytes)} bytes",
                result=preview(result.text),
                succeeded=True,
                metadata={"language": language, "level": resolved_level.value, "confidence": f"{result.confidence:.3f}"},
            ),
        )
        return result

    async def supported_languages(self) -> list[str]:
        return await self._lane.run(self._supported_on_engine)

    def shutdown(self) -> None:
        self._lane.shutdown()

    def _resolve_level(self, level: RecognitionLevel | str | None) -> RecognitionLevel:
        if level is None:
            return self.default_level
        try:
            return RecognitionLevel(level)
        except ValueError as exc:
            raise CapabilityError(
                ErrorKind.INVALID_CONFIGURATION, f"recognitionLevel must be 'fast' or 'accurate', got '{level}'"
            ) from exc

    def _supported_on_engine(self) -> list[str]:
        try:
            return self.engine.supported_languages()
        except EngineUnavailableError as exc:
            raise CapabilityError(ErrorKind.SERVICE_UNAVAILABLE, str(exc), cause=exc) from exc
        except Exception as exc:
            raise CapabilityError(ErrorKind.RECOGNITION_FAILED, f"Listing languages failed: {exc}", cause=exc) from exc

    def _recognize_on_engine(self, image: Image.Image, language: str, level: RecognitionLevel) -> RecognitionResult:
        try:
            usable = [tag for tag in language_preferences(language) if self.engine.supports_language(tag)]
        except EngineUnavailableError as exc:
            raise CapabilityError(ErrorKind.RECOGNIZER_NOT_AVAILABLE, str(exc), cause=exc) from exc
        except Exception as exc:
            raise CapabilityError(ErrorKind.RECOGNITION_FAILED, f"Language lookup failed: {exc}", cause=exc) from exc
        if not usable:
            raise CapabilityError(
                ErrorKind.RECOGNIZER_NOT_AVAILABLE, f"No recognition model installed for language '{language}'"
            )

        try:
            blocks = self.engine.recognize(image, usable, level)
        except EngineUnavailableError as exc:
            raise CapabilityError(ErrorKind.RECOGNIZER_NOT_AVAILABLE, str(exc), cause=exc) from exc
        except Exception as exc:
            raise CapabilityError(ErrorKind.RECOGNITION_FAILED, f"Recognition failed: {exc}", cause=exc) from exc

        return RecognitionResult.from_blocks(blocks, language)
