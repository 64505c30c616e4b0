from typing import Any

import pytesseract
from PIL import Image

from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.domain.models import BoundingBox, RecognitionLevel, TextBlock
from local_ai_toolkit.ports.engine import EngineError, EngineUnavailableError

logger = get_logger("adapters.ocr.tesseract")

# BCP-47 tag -> tesseract traineddata name
_TESSERACT_CODES: dict[str, str] = {
    "en-US": "eng",
    "zh-Hans": "chi_sim",
    "zh-Hant": "chi_tra",
    "ja-JP": "jpn",
    "ko-KR": "kor",
    "fr-FR": "fra",
    "de-DE": "deu",
    "es-ES": "spa",
    "it-IT": "ita",
    "pt-BR": "por",
    "ru-RU": "rus",
}

_FAMILY_DEFAULTS: dict[str, str] = {tag.split("-")[0]: tag for tag in _TESSERACT_CODES if tag != "zh-Hant"}
_TRADITIONAL_REGIONS = ("TW", "HK", "MO")

_PSM_BY_LEVEL = {
    RecognitionLevel.ACCURATE: "--oem 1 --psm 3",
    RecognitionLevel.FAST: "--oem 1 --psm 11",
}
_UPSCALE_BELOW_PX = 1000


def canonical_tag(language: str) -> str | None:
    """Map any BCP-47-like tag onto the tag set above, or None."""
    tag = language.replace("_", "-").strip()
    if tag in _TESSERACT_CODES:
        return tag
    parts = tag.split("-")
    family = parts[0].lower()
    if family == "zh":
        rest = [p.upper() if len(p) == 2 else p.capitalize() for p in parts[1:]]
        if "Hant" in rest or any(region in rest for region in _TRADITIONAL_REGIONS):
            return "zh-Hant"
        return "zh-Hans"
    return _FAMILY_DEFAULTS.get(family)


class TesseractAdapter:
    def __init__(self, tesseract_cmd: str | None = None) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self._installed: set[str] | None = None

    def _installed_codes(self) -> set[str]:
        if self._installed is None:
            try:
                self._installed = set(pytesseract.get_languages(config=""))
            except pytesseract.TesseractNotFoundError as exc:
                raise EngineUnavailableError("tesseract binary not found") from exc
        return self._installed

    def supports_language(self, language: str) -> bool:
        tag = canonical_tag(language)
        return tag is not None and _TESSERACT_CODES[tag] in self._installed_codes()

    def supported_languages(self) -> list[str]:
        installed = self._installed_codes()
        return [tag for tag, code in _TESSERACT_CODES.items() if code in installed]

    def recognize(self, image: Image.Image, languages: list[str], level: RecognitionLevel) -> list[TextBlock]:
        codes: list[str] = []
        for language in languages:
            tag = canonical_tag(language)
            if tag is not None and _TESSERACT_CODES[tag] not in codes:
                codes.append(_TESSERACT_CODES[tag])

        prepared = self._prepare(image, level)
        try:
            data = pytesseract.image_to_data(
                prepared,
                lang="+".join(codes) or "eng",
                config=_PSM_BY_LEVEL[level],
                output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractNotFoundError as exc:
            raise EngineUnavailableError("tesseract binary not found") from exc
        except (pytesseract.TesseractError, RuntimeError) as exc:
            raise EngineError(f"tesseract failed: {exc}") from exc

        return self._group_lines(data, prepared.width, prepared.height)

    @staticmethod
    def _prepare(image: Image.Image, level: RecognitionLevel) -> Image.Image:
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        if level is RecognitionLevel.FAST:
            return image
        gray = image.convert("L")
        longest = max(gray.width, gray.height)
        if longest < _UPSCALE_BELOW_PX:
            gray = gray.resize((gray.width * 2, gray.height * 2), Image.Resampling.LANCZOS)
        return gray

    @staticmethod
    def _group_lines(data: dict[str, list[Any]], width: int, height: int) -> list[TextBlock]:
        """Collapse word rows into one block per (block, paragraph, line)."""
        lines: dict[tuple[int, int, int], list[int]] = {}
        for idx, word in enumerate(data.get("text", [])):
            try:
                conf = float(data["conf"][idx])
            except (TypeError, ValueError):
                continue
            if conf < 0 or not str(word).strip():
                continue
            key = (int(data["block_num"][idx]), int(data["par_num"][idx]), int(data["line_num"][idx]))
            lines.setdefault(key, []).append(idx)

        blocks: list[TextBlock] = []
        for indices in lines.values():
            words = [str(data["text"][i]).strip() for i in indices]
            confs = [float(data["conf"][i]) for i in indices]
            left = min(int(data["left"][i]) for i in indices)
            top = min(int(data["top"][i]) for i in indices)
            right = max(int(data["left"][i]) + int(data["width"][i]) for i in indices)
            bottom = max(int(data["top"][i]) + int(data["height"][i]) for i in indices)
            box = BoundingBox(
                x=_clamp(left / width),
                y=_clamp(top / height),
                w=_clamp((right - left) / width),
                h=_clamp((bottom - top) / height),
            )
            confidence = _clamp(sum(confs) / len(confs) / 100.0)
            blocks.append(TextBlock(text=" ".join(words), confidence=confidence, bounding_box=box))
        return blocks


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)
