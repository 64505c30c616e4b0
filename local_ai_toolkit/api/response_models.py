from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from local_ai_toolkit.domain.models import (
	RecognitionResult,
	RecordingSession,
	SynthesisRequest,
	TextBlock,
	TranscriptionResult,
	Voice,
)


class HealthResponse(BaseModel):
	model_config = ConfigDict(extra="forbid")

	status: Literal["ok"] = "ok"
	version: str


class StatsResponse(BaseModel):
	model_config = ConfigDict(extra="forbid", populate_by_name=True)

	request_count: int = Field(alias="requestCount")


class BoundingBoxResponse(BaseModel):
	model_config = ConfigDict(extra="forbid")

	x: float
	y: float
	w: float
	h: float


class TextBlockResponse(BaseModel):
	model_config = ConfigDict(extra="forbid", populate_by_name=True)

	text: str
	confidence: float
	bounding_box: BoundingBoxResponse = Field(alias="boundingBox")

	@classmethod
	def from_block(cls, block: TextBlock) -> "TextBlockResponse":
		box = block.bounding_box
		return cls(
			text=block.text,
			confidence=block.confidence,
			bounding_box=BoundingBoxResponse(x=box.x, y=box.y, w=box.w, h=box.h),
		)


class RecognitionResponse(BaseModel):
	model_config = ConfigDict(extra="forbid")

	text: str
	confidence: float
	language: str
	blocks: list[TextBlockResponse]

	@classmethod
	def from_result(cls, result: RecognitionResult) -> "RecognitionResponse":
		return cls(
			text=result.text,
			confidence=result.confidence,
			language=result.language,
			blocks=[TextBlockResponse.from_block(block) for block in result.blocks],
		)


class SynthesisPayload(BaseModel):
	"""JSON body of POST /tts."""
	model_config = ConfigDict(extra="forbid", populate_by_name=True)

	text: str
	voice: str | None = None
	language: str | None = None
	rate: float | None = None
	pitch: float = 1.0
	volume: float = 1.0
	output_format: str | None = Field(default=None, alias="outputFormat")

	def to_request(self, default_rate: float) -> SynthesisRequest:
		return SynthesisRequest(
			text=self.text,
			voice=self.voice,
			language=self.language,
			rate=default_rate if self.rate is None else self.rate,
			pitch=self.pitch,
			volume=self.volume,
		)


class VoiceResponse(BaseModel):
	model_config = ConfigDict(extra="forbid")

	identifier: str
	name: str
	language: str
	quality: Literal["standard", "enhanced"]

	@classmethod
	def from_voice(cls, voice: Voice) -> "VoiceResponse":
		return cls(identifier=voice.identifier, name=voice.name, language=voice.language, quality=voice.quality)


class SegmentResponse(BaseModel):
	model_config = ConfigDict(extra="forbid")

	text: str
	timestamp: float
	duration: float
	confidence: float


class TranscriptionResponse(BaseModel):
	model_config = ConfigDict(extra="forbid")

	text: str
	confidence: float
	segments: list[SegmentResponse]

	@classmethod
	def from_result(cls, result: TranscriptionResult) -> "TranscriptionResponse":
		return cls(
			text=result.text,
			confidence=result.confidence,
			segments=[
				SegmentResponse(
					text=seg.text,
					timestamp=seg.start,
					duration=seg.duration,
					confidence=seg.confidence,
				)
				for seg in result.segments
			],
		)


class StartRecordingResponse(BaseModel):
	model_config = ConfigDict(extra="forbid", populate_by_name=True)

	status: Literal["recording"] = "recording"
	language: str
	started_at: datetime = Field(alias="startedAt")

	@classmethod
	def from_session(cls, session: RecordingSession) -> "StartRecordingResponse":
		return cls(language=session.language, started_at=session.started_at)
