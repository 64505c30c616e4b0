"""Tests for the text recognition service wrapper."""

from __future__ import annotations

import asyncio

import pytest

from local_ai_toolkit.core.errors import CapabilityError, ErrorKind
from local_ai_toolkit.domain.models import RecognitionLevel
from local_ai_toolkit.ports.engine import EngineError
from local_ai_toolkit.services.recognition import RecognitionService, language_preferences

from conftest import MemoryHistory, StubTextEngine, make_png_bytes, sample_blocks


class TestLanguagePreferences:
    def test_family_members_follow_hint(self) -> None:
        assert language_preferences("zh-Hans") == ["zh-Hans", "zh-Hant", "en-US"]
        assert language_preferences("zh-Hant") == ["zh-Hant", "zh-Hans", "en-US"]

    def test_fallback_is_last_and_not_duplicated(self) -> None:
        assert language_preferences("ja-JP") == ["ja-JP", "en-US"]
        assert language_preferences("en-US") == ["en-US"]


class TestRecognitionService:
    def test_recognize_aggregates_blocks(self, recognizer: RecognitionService, history: MemoryHistory) -> None:
        result = asyncio.run(recognizer.recognize(make_png_bytes(), "en-US"))

        assert result.text == "Hello\nWorld"
        assert result.confidence == pytest.approx(0.8)
        assert result.language == "en-US"
        assert len(result.blocks) == 2
        assert history.records[-1].kind == "ocr"
        assert history.records[-1].succeeded

    def test_defaults_to_configured_language_and_level(
        self, recognizer: RecognitionService, text_engine: StubTextEngine
    ) -> None:
        asyncio.run(recognizer.recognize(make_png_bytes()))

        assert text_engine.received_languages[-1] == ["en-US"]
        assert text_engine.received_levels[-1] is RecognitionLevel.ACCURATE

    def test_preference_list_reaches_engine(self, recognizer: RecognitionService, text_engine: StubTextEngine) -> None:
        asyncio.run(recognizer.recognize(make_png_bytes(), "zh-Hans", level="fast"))

        assert text_engine.received_languages[-1] == ["zh-Hans", "zh-Hant", "en-US"]
        assert text_engine.received_levels[-1] is RecognitionLevel.FAST

    def test_uninstalled_languages_are_dropped(self) -> None:
        engine = StubTextEngine(blocks=sample_blocks(), languages=("en-US",))
        service = RecognitionService(engine=engine)
        try:
            asyncio.run(service.recognize(make_png_bytes(), "zh-Hans"))
        finally:
            service.shutdown()

        assert engine.received_languages[-1] == ["en-US"]

    def test_no_usable_language_is_recognizer_not_available(self) -> None:
        engine = StubTextEngine(languages=())
        service = RecognitionService(engine=engine)
        try:
            with pytest.raises(CapabilityError) as exc_info:
                asyncio.run(service.recognize(make_png_bytes(), "ko-KR"))
        finally:
            service.shutdown()

        assert exc_info.value.kind is ErrorKind.RECOGNIZER_NOT_AVAILABLE
        assert engine.overlap.calls == 0

    @pytest.mark.parametrize("payload", [b"", b"definitely not an image"])
    def test_undecodable_image(
        self, recognizer: RecognitionService, text_engine: StubTextEngine, history: MemoryHistory, payload: bytes
    ) -> None:
        with pytest.raises(CapabilityError) as exc_info:
            asyncio.run(recognizer.recognize(payload))

        assert exc_info.value.kind is ErrorKind.INVALID_IMAGE
        assert text_engine.overlap.calls == 0
        assert history.records[-1].succeeded is False

    def test_engine_failure_is_wrapped(self) -> None:
        cause = EngineError("model crashed")
        service = RecognitionService(engine=StubTextEngine(error=cause))
        try:
            with pytest.raises(CapabilityError) as exc_info:
                asyncio.run(service.recognize(make_png_bytes()))
        finally:
            service.shutdown()

        assert exc_info.value.kind is ErrorKind.RECOGNITION_FAILED
        assert exc_info.value.cause is cause

    def test_unexpected_language_lookup_failure_is_wrapped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        engine = StubTextEngine(blocks=sample_blocks())
        cause = RuntimeError("tessdata unreadable")

        def broken_lookup(language: str) -> bool:
            raise cause

        monkeypatch.setattr(engine, "supports_language", broken_lookup)
        service = RecognitionService(engine=engine)
        try:
            with pytest.raises(CapabilityError) as exc_info:
                asyncio.run(service.recognize(make_png_bytes()))
        finally:
            service.shutdown()

        assert exc_info.value.kind is ErrorKind.RECOGNITION_FAILED
        assert exc_info.value.cause is cause

    def test_no_regions_is_empty_result(self) -> None:
        service = RecognitionService(engine=StubTextEngine(blocks=[]))
        try:
            result = asyncio.run(service.recognize(make_png_bytes()))
        finally:
            service.shutdown()

        assert result.text == ""
        assert result.confidence == 0.0
        assert result.blocks == ()

    def test_unknown_level_is_invalid_configuration(self, recognizer: RecognitionService) -> None:
        with pytest.raises(CapabilityError) as exc_info:
            asyncio.run(recognizer.recognize(make_png_bytes(), level="slow"))

        assert exc_info.value.kind is ErrorKind.INVALID_CONFIGURATION

    def test_concurrent_calls_never_overlap(self) -> None:
        engine = StubTextEngine(blocks=sample_blocks(), delay=0.05)
        service = RecognitionService(engine=engine)

        async def burst() -> list:
            image = make_png_bytes()
            return await asyncio.gather(*(service.recognize(image) for _ in range(5)))

        try:
            results = asyncio.run(burst())
        finally:
            service.shutdown()

        assert len(results) == 5
        assert engine.overlap.calls == 5
        assert engine.overlap.max_active == 1

    def test_failing_history_sink_does_not_fail_call(self, text_engine: StubTextEngine) -> None:
        service = RecognitionService(engine=text_engine, history=MemoryHistory(error=OSError("disk full")))
        try:
            result = asyncio.run(service.recognize(make_png_bytes()))
        finally:
            service.shutdown()

        assert result.text == "Hello\nWorld"
