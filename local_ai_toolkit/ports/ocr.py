from typing import Protocol

from PIL import Image

from local_ai_toolkit.domain.models import RecognitionLevel, TextBlock


class TextRecognitionPort(Protocol):
    """Opaque text recognition engine. Not safe for concurrent calls."""

    def recognize(self, image: Image.Image, languages: list[str], level: RecognitionLevel) -> list[TextBlock]:
        """Recognize text regions in reading order.

        Args:
            image: Decoded image.
            languages: BCP-47 tags in preference order; the first is primary.
            level: Speed/accuracy trade-off.

        Raises:
            EngineError: The engine itself failed.
        """
        ...

    def supports_language(self, language: str) -> bool:
        ...

    def supported_languages(self) -> list[str]:
        ...
