"""Shared test fixtures and stub engines."""

from __future__ import annotations

import io
import queue
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterator

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from local_ai_toolkit.api.app import app
from local_ai_toolkit.core.config import AppConfig, PathsConfig
from local_ai_toolkit.core.counter import RequestCounter
from local_ai_toolkit.core.di import (
    get_config,
    get_recognition_service,
    get_request_counter,
    get_synthesis_service,
    get_transcription_service,
)
from local_ai_toolkit.domain.models import (
    AudioExportFormat,
    AudioFormat,
    AudioFrame,
    BoundingBox,
    HistoryRecord,
    RecognitionLevel,
    Segment,
    TextBlock,
    Voice,
)
from local_ai_toolkit.ports.engine import EngineError
from local_ai_toolkit.services.recognition import RecognitionService
from local_ai_toolkit.services.synthesis import SynthesisService
from local_ai_toolkit.services.transcription import TranscriptionService


class OverlapCounter:
    """Counts concurrent entries into a stub engine."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.calls = 0

    def enter(self, *, linger: bool = True) -> None:
        with self._lock:
            self.active += 1
            self.calls += 1
            self.max_active = max(self.max_active, self.active)
        if linger and self.delay:
            time.sleep(self.delay)

    def leave(self) -> None:
        with self._lock:
            self.active -= 1

    def __enter__(self) -> "OverlapCounter":
        self.enter()
        return self

    def __exit__(self, *exc_info) -> None:
        self.leave()

    @contextmanager
    def quick(self) -> Iterator[None]:
        """Counts an entry without the configured delay."""
        self.enter(linger=False)
        try:
            yield
        finally:
            self.leave()


class StubTextEngine:
    def __init__(
        self,
        blocks: list[TextBlock] | None = None,
        languages: tuple[str, ...] = ("en-US", "zh-Hans", "zh-Hant"),
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.blocks = blocks if blocks is not None else []
        self.languages = languages
        self.error = error
        self.overlap = OverlapCounter(delay)
        self.received_languages: list[list[str]] = []
        self.received_levels: list[RecognitionLevel] = []

    def recognize(self, image: Image.Image, languages: list[str], level: RecognitionLevel) -> list[TextBlock]:
        self.overlap.enter()
        try:
            self.received_languages.append(list(languages))
            self.received_levels.append(level)
            if self.error is not None:
                raise self.error
            return list(self.blocks)
        finally:
            self.overlap.leave()

    def supports_language(self, language: str) -> bool:
        return language in self.languages

    def supported_languages(self) -> list[str]:
        return list(self.languages)


class StubSpeechEngine:
    def __init__(
        self, voices: list[Voice] | None = None, error: Exception | None = None, delay: float = 0.0
    ) -> None:
        self._voices = voices if voices is not None else [
            Voice(identifier="voice.en", name="Alex", language="en-US"),
            Voice(identifier="voice.en.gb", name="Daniel", language="en-GB"),
            Voice(identifier="voice.zh", name="Tingting", language="zh-CN", quality="enhanced"),
        ]
        self.error = error
        self.rendered: list[dict] = []
        self.overlap = OverlapCounter(delay)

    def voices(self) -> list[Voice]:
        self.overlap.enter()
        try:
            return list(self._voices)
        finally:
            self.overlap.leave()

    def render_to_wav(self, text: str, output_path: Path, *, voice_id, words_per_minute: int, volume: float) -> None:
        self.overlap.enter()
        try:
            if self.error is not None:
                raise self.error
            self.rendered.append({"text": text, "voice_id": voice_id, "wpm": words_per_minute, "volume": volume})
            output_path.write_bytes(b"RIFF-stub-wav")
        finally:
            self.overlap.leave()


class StubCodec:
    def __init__(self, encode_error: Exception | None = None, decode_error: Exception | None = None) -> None:
        self.encode_error = encode_error
        self.decode_error = decode_error
        self.encoded: list[tuple[Path, Path, AudioExportFormat, float]] = []

    def encode_file(self, src: Path, dst: Path, fmt: AudioExportFormat, *, pitch: float = 1.0) -> Path:
        if self.encode_error is not None:
            raise self.encode_error
        self.encoded.append((src, dst, fmt, pitch))
        dst.write_bytes(b"ENCODED-" + fmt.value.encode())
        return dst

    def decode_file(self, src: Path, *, pitch: float = 1.0) -> tuple[np.ndarray, int]:
        if self.decode_error is not None:
            raise self.decode_error
        return np.zeros(2205, dtype=np.float32), 22050


class StubPlayback:
    """Finishes immediately unless `hold` is set, in which case only stop() finishes."""

    def __init__(self, hold: bool = False, play_error: Exception | None = None) -> None:
        self.hold = hold
        self.play_error = play_error
        self.started = threading.Event()
        self.plays = 0
        self._on_finished: Callable[[], None] | None = None

    def play(self, samples: np.ndarray, sample_rate: int, on_finished: Callable[[], None]) -> None:
        if self.play_error is not None:
            raise self.play_error
        self.plays += 1
        self._on_finished = on_finished
        self.started.set()
        if not self.hold:
            self._finish()

    def stop(self) -> None:
        self._finish()

    def _finish(self) -> None:
        callback, self._on_finished = self._on_finished, None
        if callback is not None:
            callback()


class StubRecognitionSession:
    def __init__(self, segments: list[Segment], overlap: OverlapCounter, error: Exception | None = None) -> None:
        self.segments = segments
        self.overlap = overlap
        self.error = error
        self.frames: list[AudioFrame] = []
        self.cancelled = False
        self.finished = False

    def feed(self, frame: AudioFrame) -> str | None:
        with self.overlap:
            self.frames.append(frame)
            return "partial"

    def finish(self) -> list[Segment]:
        with self.overlap:
            self.finished = True
            if self.error is not None:
                raise self.error
            return list(self.segments)

    def cancel(self) -> None:
        with self.overlap:
            self.cancelled = True


class StubSttEngine:
    def __init__(
        self,
        segments: list[Segment] | None = None,
        languages: tuple[str, ...] = ("en-US", "zh-Hans"),
        local: bool = True,
        error: Exception | None = None,
        session_error: Exception | None = None,
        open_error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.segments = segments if segments is not None else [
            Segment(text="world", start=1.0, duration=0.5, confidence=0.6),
            Segment(text="hello", start=0.0, duration=1.2, confidence=1.0),
        ]
        self.languages = languages
        self.local = local
        self.error = error
        self.session_error = session_error
        self.open_error = open_error
        self.overlap = OverlapCounter(delay)
        self.sessions: list[StubRecognitionSession] = []
        self.transcribed: list[Path] = []
        self.seen_on_disk: list[bool] = []

    def transcribe_file(self, audio_path: Path, language: str) -> list[Segment]:
        with self.overlap:
            self.transcribed.append(audio_path)
            self.seen_on_disk.append(audio_path.exists())
            if self.error is not None:
                raise self.error
            return list(self.segments)

    def supports_language(self, language: str) -> bool:
        with self.overlap.quick():
            return language in self.languages

    def supported_languages(self) -> list[str]:
        with self.overlap.quick():
            return list(self.languages)

    def can_run_locally(self) -> bool:
        with self.overlap.quick():
            return self.local

    def open_session(self, language: str, audio_format: AudioFormat) -> StubRecognitionSession:
        with self.overlap.quick():
            if self.open_error is not None:
                raise self.open_error
            session = StubRecognitionSession(self.segments, self.overlap, error=self.session_error)
            self.sessions.append(session)
            return session


class StubReader:
    def __init__(self) -> None:
        self.queue: queue.Queue[AudioFrame | None] = queue.Queue()
        self.closed = False

    def read(self, timeout_seconds: float | None = None) -> AudioFrame | None:
        if self.closed:
            return None
        try:
            return self.queue.get(timeout=timeout_seconds)
        except queue.Empty:
            return None

    def close(self) -> None:
        self.closed = True
        self.queue.put(None)


class StubStream:
    def __init__(self, start_error: Exception | None = None) -> None:
        self.start_error = start_error
        self.running = False
        self.readers: list[StubReader] = []
        self.format = AudioFormat(sample_rate=16000, channels=1, blocksize=1600, dtype="float32")

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.running = True

    def stop(self) -> None:
        self.running = False

    def is_running(self) -> bool:
        return self.running

    def audio_format(self) -> AudioFormat:
        return self.format

    def subscribe(self, *, name: str, max_frames: int = 1024) -> StubReader:
        reader = StubReader()
        self.readers.append(reader)
        return reader

    def push(self, count: int = 1) -> None:
        for seq in range(count):
            frame = AudioFrame(
                data=np.zeros(self.format.blocksize, dtype=np.float32),
                format=self.format,
                sequence=seq,
            )
            for reader in self.readers:
                reader.queue.put(frame)


class MemoryHistory:
    def __init__(self, error: Exception | None = None) -> None:
        self.records: list[HistoryRecord] = []
        self.error = error

    def record(self, entry: HistoryRecord) -> None:
        if self.error is not None:
            raise self.error
        self.records.append(entry)


def make_png_bytes(width: int = 64, height: int = 32) -> bytes:
    image = Image.new("RGB", (width, height), color="white")
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def sample_blocks() -> list[TextBlock]:
    return [
        TextBlock(text="Hello", confidence=0.9, bounding_box=BoundingBox(x=0.1, y=0.1, w=0.3, h=0.1)),
        TextBlock(text="World", confidence=0.7, bounding_box=BoundingBox(x=0.1, y=0.3, w=0.3, h=0.1)),
    ]


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Default config with all paths inside tmp_path."""
    return AppConfig(paths=PathsConfig(tmp_dir=tmp_path / "tmp", data_dir=tmp_path / "data"))


@pytest.fixture
def text_engine() -> StubTextEngine:
    return StubTextEngine(blocks=sample_blocks())


@pytest.fixture
def speech_engine() -> StubSpeechEngine:
    return StubSpeechEngine()


@pytest.fixture
def codec() -> StubCodec:
    return StubCodec()


@pytest.fixture
def playback() -> StubPlayback:
    return StubPlayback()


@pytest.fixture
def stt_engine() -> StubSttEngine:
    return StubSttEngine()


@pytest.fixture
def stream() -> StubStream:
    return StubStream()


@pytest.fixture
def history() -> MemoryHistory:
    return MemoryHistory()


@pytest.fixture
def recognizer(text_engine: StubTextEngine, history: MemoryHistory) -> RecognitionService:
    service = RecognitionService(engine=text_engine, history=history)
    yield service
    service.shutdown()


@pytest.fixture
def synthesizer(
    speech_engine: StubSpeechEngine,
    codec: StubCodec,
    playback: StubPlayback,
    history: MemoryHistory,
    config: AppConfig,
) -> SynthesisService:
    service = SynthesisService(
        engine=speech_engine,
        codec=codec,
        playback=playback,
        tmp_dir=config.paths.tmp_dir,
        history=history,
    )
    yield service
    service.shutdown()


@pytest.fixture
def transcriber(stt_engine: StubSttEngine, stream: StubStream, history: MemoryHistory) -> TranscriptionService:
    service = TranscriptionService(engine=stt_engine, stream=stream, history=history)
    yield service
    service.shutdown()


@pytest.fixture
def make_client(
    config: AppConfig,
    recognizer: RecognitionService,
    synthesizer: SynthesisService,
    transcriber: TranscriptionService,
):
    """Build a TestClient wired to the stub-backed services; server overrides via kwargs."""
    counter = RequestCounter()

    def _make(**server_overrides) -> TestClient:
        cfg = replace(config, server=replace(config.server, **server_overrides))
        app.dependency_overrides[get_config] = lambda: cfg
        app.dependency_overrides[get_recognition_service] = lambda: recognizer
        app.dependency_overrides[get_synthesis_service] = lambda: synthesizer
        app.dependency_overrides[get_transcription_service] = lambda: transcriber
        app.dependency_overrides[get_request_counter] = lambda: counter
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def failing_codec() -> StubCodec:
    return StubCodec(encode_error=EngineError("encoder crashed"))
