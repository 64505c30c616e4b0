from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal
import time
import uuid

import numpy as np


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mean_confidence(values: list[float]) -> float:
    """Arithmetic mean, 0.0 for an empty list."""
    if not values:
        return 0.0
    return float(sum(values) / len(values))


# Text recognition

class RecognitionLevel(str, Enum):
    FAST = "fast"
    ACCURATE = "accurate"


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Region normalized to the image size, origin at the top-left corner."""

    x: float
    y: float
    w: float
    h: float

    def __post_init__(self) -> None:
        for name in ("x", "y", "w", "h"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"bounding box {name} must be within [0, 1], got {value}")


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str
    confidence: float
    bounding_box: BoundingBox


@dataclass(frozen=True, slots=True)
class RecognitionResult:
    text: str
    confidence: float
    language: str
    blocks: tuple[TextBlock, ...] = ()

    @classmethod
    def from_blocks(cls, blocks: list[TextBlock], language: str) -> "RecognitionResult":
        return cls(
            text="\n".join(block.text for block in blocks),
            confidence=mean_confidence([block.confidence for block in blocks]),
            language=language,
            blocks=tuple(blocks),
        )


# Speech synthesis

class AudioExportFormat(str, Enum):
    MP3 = "mp3"
    WAV = "wav"
    AAC = "aac"
    M4A = "m4a"

    @property
    def file_extension(self) -> str:
        return self.value

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self]


_CONTENT_TYPES = {
    AudioExportFormat.MP3: "audio/mpeg",
    AudioExportFormat.WAV: "audio/wav",
    AudioExportFormat.AAC: "audio/aac",
    AudioExportFormat.M4A: "audio/mp4",
}

RATE_RANGE = (0.0, 1.0)
PITCH_RANGE = (0.5, 2.0)
VOLUME_RANGE = (0.0, 1.0)


@dataclass(frozen=True, slots=True)
class SynthesisRequest:
    """Parameters for one synthesis call. Validated by the synthesis service."""

    text: str
    voice: str | None = None
    language: str | None = None
    rate: float = 0.5
    pitch: float = 1.0
    volume: float = 1.0

    def out_of_range(self) -> list[str]:
        """Names of parameters outside their contractual range."""
        problems: list[str] = []
        for name, (low, high) in (("rate", RATE_RANGE), ("pitch", PITCH_RANGE), ("volume", VOLUME_RANGE)):
            value = getattr(self, name)
            if not low <= value <= high:
                problems.append(f"{name}={value} not in [{low}, {high}]")
        return problems


VoiceQuality = Literal["standard", "enhanced"]


@dataclass(frozen=True, slots=True)
class Voice:
    identifier: str
    name: str
    language: str
    quality: VoiceQuality = "standard"


# Speech transcription

@dataclass(frozen=True, slots=True)
class Segment:
    text: str
    start: float
    duration: float
    confidence: float

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True, slots=True)
class TranscriptionResult:
    text: str
    confidence: float
    segments: tuple[Segment, ...] = ()
    language: str | None = None
    generated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_segments(cls, segments: list[Segment], language: str | None, text: str | None = None) -> "TranscriptionResult":
        ordered = order_segments(segments)
        if text is None:
            text = " ".join(seg.text for seg in ordered if seg.text)
        return cls(
            text=text.strip(),
            confidence=mean_confidence([seg.confidence for seg in ordered]),
            segments=tuple(ordered),
            language=language,
        )


def order_segments(segments: list[Segment]) -> list[Segment]:
    """Sort by start offset and trim overlaps so spans never intersect."""
    ordered = sorted(segments, key=lambda seg: seg.start)
    result: list[Segment] = []
    for seg in ordered:
        if result and seg.start < result[-1].end:
            prev = result[-1]
            result[-1] = Segment(
                text=prev.text,
                start=prev.start,
                duration=max(seg.start - prev.start, 0.0),
                confidence=prev.confidence,
            )
        result.append(seg)
    return result


class RecordingState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    FINALIZING = "FINALIZING"
    ERROR = "ERROR"


# Live audio

AudioDtype = Literal["float32", "int16", "float64"]


@dataclass(frozen=True, slots=True)
class AudioFormat:
    """Describes audio stream parameters. Single source of truth for frame config."""

    sample_rate: int
    channels: int
    blocksize: int
    dtype: AudioDtype

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels <= 0:
            raise ValueError(f"channels must be positive, got {self.channels}")
        if self.blocksize <= 0:
            raise ValueError(f"blocksize must be positive, got {self.blocksize}")


@dataclass(slots=True)
class AudioFrame:
    """A single chunk of captured audio."""

    data: np.ndarray
    format: AudioFormat
    timestamp_ns: int = field(default_factory=lambda: time.monotonic_ns())
    sequence: int = 0

    def to_mono_float32(self) -> np.ndarray:
        """Mono float32 in [-1.0, 1.0], the layout speech models expect."""
        arr = self.data
        if arr.ndim == 2:
            arr = arr.mean(axis=1)
        if arr.dtype == np.int16:
            arr = arr.astype(np.float32) / 32768.0
        elif arr.dtype != np.float32:
            arr = arr.astype(np.float32, copy=False)
        return arr

    @property
    def num_samples(self) -> int:
        return int(self.data.shape[0])

    @property
    def duration_seconds(self) -> float:
        return self.num_samples / self.format.sample_rate


@dataclass(frozen=True, slots=True)
class RecordingSession:
    """Metadata of the live capture session exposed to callers."""

    language: str
    started_at: datetime
    max_duration_seconds: int


# History

HistoryKind = Literal["ocr", "tts", "stt"]


@dataclass(frozen=True, slots=True)
class HistoryRecord:
    kind: HistoryKind
    content: str
    result: str
    succeeded: bool
    metadata: dict[str, str] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=_utcnow)
