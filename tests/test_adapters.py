"""Tests for engine-independent parts of the adapters and gateway helpers."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest

from local_ai_toolkit.adapters.audio.ffmpeg import AudioConverterAdapter
from local_ai_toolkit.adapters.history.jsonl import JsonlHistoryAdapter
from local_ai_toolkit.adapters.ocr.tesseract import TesseractAdapter, canonical_tag
from local_ai_toolkit.api.guards import _extract_key, run_bounded
from local_ai_toolkit.api.staging import staged_file
from local_ai_toolkit.core.errors import CapabilityError, ErrorKind
from local_ai_toolkit.domain.models import AudioExportFormat, HistoryRecord
from local_ai_toolkit.ports.engine import EngineUnavailableError
from local_ai_toolkit.services.serial import EngineLane


class TestTesseractMapping:
    @pytest.mark.parametrize(
        ("tag", "expected"),
        [
            ("en-US", "en-US"),
            ("en", "en-US"),
            ("en_GB", "en-US"),
            ("zh-TW", "zh-Hant"),
            ("zh-Hant-HK", "zh-Hant"),
            ("zh_CN", "zh-Hans"),
            ("ja", "ja-JP"),
            ("xx-YY", None),
        ],
    )
    def test_canonical_tag(self, tag: str, expected: str | None) -> None:
        assert canonical_tag(tag) == expected

    def test_words_grouped_into_lines(self) -> None:
        data = {
            "text": ["", "Hello", "world", "again", "noise"],
            "conf": ["-1", "90", "80", "60", "-1"],
            "block_num": [1, 1, 1, 1, 1],
            "par_num": [0, 1, 1, 1, 1],
            "line_num": [0, 1, 1, 2, 2],
            "left": [0, 10, 60, 10, 0],
            "top": [0, 10, 10, 50, 0],
            "width": [200, 40, 50, 40, 5],
            "height": [100, 20, 20, 20, 5],
        }

        blocks = TesseractAdapter._group_lines(data, width=200, height=100)

        assert [block.text for block in blocks] == ["Hello world", "again"]
        assert blocks[0].confidence == pytest.approx(0.85)
        box = blocks[0].bounding_box
        assert (box.x, box.y, box.w, box.h) == pytest.approx((0.05, 0.1, 0.5, 0.2))


class TestFfmpegAdapter:
    def test_neutral_pitch_adds_no_filter(self) -> None:
        assert AudioConverterAdapter()._pitch_filter(1.0) == []

    def test_pitch_filter_keeps_tempo(self) -> None:
        args = AudioConverterAdapter(sample_rate=22050)._pitch_filter(2.0)

        assert args[0] == "-af"
        assert "asetrate=44100" in args[1]
        assert "atempo=0.500000" in args[1]

    def test_missing_binary_is_unavailable(self, tmp_path: Path) -> None:
        src = tmp_path / "in.wav"
        src.write_bytes(b"RIFF")
        adapter = AudioConverterAdapter(ffmpeg_bin="ffmpeg-binary-that-does-not-exist")

        with pytest.raises(EngineUnavailableError):
            adapter.encode_file(src, tmp_path / "out.mp3", AudioExportFormat.MP3)


class TestWhisperCheckpoint:
    def test_checkpoint_location(self, tmp_path: Path) -> None:
        pytest.importorskip("whisper")
        from local_ai_toolkit.adapters.speech_to_text.whisper import WhisperAdapter, cached_checkpoint

        checkpoint = cached_checkpoint("base", str(tmp_path))

        assert checkpoint is not None
        assert Path(checkpoint).parent == tmp_path
        assert checkpoint.endswith(".pt")
        assert cached_checkpoint("no-such-model", str(tmp_path)) is None
        assert WhisperAdapter("base", download_root=str(tmp_path)).can_run_locally() is False

        Path(checkpoint).write_bytes(b"weights")
        assert WhisperAdapter("base", download_root=str(tmp_path)).can_run_locally() is True


class TestJsonlHistory:
    def test_keeps_newest_records(self, tmp_path: Path) -> None:
        sink = JsonlHistoryAdapter(tmp_path / "history" / "log.jsonl", max_items=3)

        for i in range(5):
            sink.record(HistoryRecord(kind="ocr", content=str(i), result="ok", succeeded=True))

        items = sink.read_all()
        assert [item["content"] for item in items] == ["4", "3", "2"]
        assert items[0]["kind"] == "ocr"

    def test_survives_reopen(self, tmp_path: Path) -> None:
        path = tmp_path / "log.jsonl"
        JsonlHistoryAdapter(path, max_items=2).record(
            HistoryRecord(kind="tts", content="a", result="ok", succeeded=True)
        )

        sink = JsonlHistoryAdapter(path, max_items=2)
        sink.record(HistoryRecord(kind="tts", content="b", result="ok", succeeded=True))
        sink.record(HistoryRecord(kind="tts", content="c", result="ok", succeeded=False))

        assert [item["content"] for item in sink.read_all()] == ["c", "b"]


class TestGatewayHelpers:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            (None, None),
            ("", None),
            ("Bearer abc", "abc"),
            ("bearer   abc ", "abc"),
            ("abc", "abc"),
        ],
    )
    def test_extract_key(self, header: str | None, expected: str | None) -> None:
        assert _extract_key(header) == expected

    def test_staged_file_removed_on_error(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeError):
            with staged_file(tmp_path, suffix=".wav") as staged:
                staged.path.write_bytes(b"data")
                raise RuntimeError("boom")

        assert not staged.path.exists()
        assert list(tmp_path.iterdir()) == []

    def test_timed_out_call_keeps_staged_file_until_it_settles(self, tmp_path: Path) -> None:
        lane = EngineLane("staging-test")
        seen_on_disk: list[bool] = []

        def slow_read(path: Path) -> None:
            time.sleep(0.3)
            seen_on_disk.append(path.exists())

        async def scenario() -> tuple[ErrorKind, bool]:
            with pytest.raises(CapabilityError) as exc_info:
                with staged_file(tmp_path, suffix=".wav") as staged:
                    staged.path.write_bytes(b"data")
                    await run_bounded(lane.run(slow_read, staged.path), 0.05, on_timeout=staged.hold_until)
            kept = staged.path.exists()
            deadline = time.monotonic() + 2.0
            while staged.path.exists() and time.monotonic() < deadline:
                await asyncio.sleep(0.02)
            return exc_info.value.kind, kept

        try:
            kind, kept = asyncio.run(scenario())
        finally:
            lane.shutdown()

        assert kind is ErrorKind.TIMEOUT
        assert kept
        assert seen_on_disk == [True]
        assert list(tmp_path.iterdir()) == []
