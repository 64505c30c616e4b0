import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Event, Lock, Thread

from local_ai_toolkit.core.errors import CapabilityError, ErrorKind
from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.domain.models import (
	AudioFrame,
	HistoryRecord,
	RecordingSession,
	RecordingState,
	Segment,
	TranscriptionResult,
)
from local_ai_toolkit.ports.audiostream import AudioStreamPort, AudioStreamReader
from local_ai_toolkit.ports.engine import DevicePermissionError, EngineUnavailableError, UnsupportedInputError
from local_ai_toolkit.ports.history import HistorySinkPort
from local_ai_toolkit.ports.stt import RecognitionSession, SpeechToTextPort
from local_ai_toolkit.services.serial import EngineLane, emit_history, preview

logger = get_logger("services.transcription")


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


@dataclass(slots=True)
class TranscriptionService:
	"""Transcribes audio files and owns the single live microphone session."""

	engine: SpeechToTextPort
	stream: AudioStreamPort
	default_language: str = "en-US"
	local_only: bool = False
	max_duration_seconds: int = 300
	history: HistorySinkPort | None = None
	_lane: EngineLane = field(default_factory=lambda: EngineLane("stt-engine"), init=False)
	_lock: Lock = field(default_factory=Lock, init=False)
	_state: RecordingState = field(default=RecordingState.IDLE, init=False)
	_session: RecordingSession | None = field(default=None, init=False)
	_engine_session: RecognitionSession | None = field(default=None, init=False)
	_reader: AudioStreamReader | None = field(default=None, init=False)
	_thread: Thread | None = field(default=None, init=False)
	_stop: Event = field(default_factory=Event, init=False)
	_captured_seconds: float = field(default=0.0, init=False)
	_feed_error: BaseException | None = field(default=None, init=False)
	_starting: bool = field(default=False, init=False)

	@property
	def is_recording(self) -> bool:
		return self._state is RecordingState.RECORDING

	@property
	def recording_state(self) -> RecordingState:
		return self._state

	async def supported_languages(self) -> list[str]:
		return await self._lane.run(self._supported_on_engine)

	async def transcribe(
		self,
		audio_path: Path,
		language: str | None = None,
		local_only: bool | None = None,
	) -> TranscriptionResult:
		language = language or self.default_language
		local_only = self.local_only if local_only is None else local_only
		audio_path = Path(audio_path)
		started = time.monotonic()
		try:
			if not audio_path.is_file():
				raise CapabilityError(ErrorKind.INVALID_AUDIO, f"Audio file not found: {audio_path}")
			result = await self._lane.run(self._transcribe_on_engine, audio_path, language, local_only)
		except CapabilityError as exc:
			logger.warning("Transcription failed: %s", exc)
			emit_history(
				self.history,
				HistoryRecord(kind="stt", content=audio_path.name, result=exc.message, succeeded=False),
			)
			raise

		logger.info(
			"Transcribed %s: %d segments (language=%s) in %.0fms",
			audio_path.name,
			len(result.segments),
			language,
			(time.monotonic() - started) * 1000,
		)
		emit_history(
			self.history,
			HistoryRecord(
				kind="stt",
				content=audio_path.name,
				result=preview(result.text),
				succeeded=True,
				metadata={"language": language, "confidence": f"{result.confidence:.3f}"},
			),
		)
		return result

	def start_recording(self, language: str | None = None) -> RecordingSession:
		"""Open the microphone and start feeding the engine.

		Raises:
			CapabilityError: AlreadyRecording unless idle; RecognizerNotAvailable,
				RecognitionFailed, ServiceUnavailable or NotAuthorized when the
				session cannot start.
		"""
		language = language or self.default_language
		with self._lock:
			if self._state is not RecordingState.IDLE or self._starting:
				raise CapabilityError(ErrorKind.ALREADY_RECORDING, "A recording session is already active")
			self._starting = True

		try:
			try:
				pending = self._lane.submit(self._open_on_engine, language)
			except RuntimeError as exc:
				raise CapabilityError(ErrorKind.SERVICE_UNAVAILABLE, "Speech recognizer is shut down", cause=exc) from exc
			engine_session = pending.result()
			reader = self._open_microphone(engine_session)
		except BaseException:
			with self._lock:
				self._starting = False
			raise

		session = RecordingSession(
			language=language,
			started_at=_utcnow(),
			max_duration_seconds=self.max_duration_seconds,
		)
		with self._lock:
			self._starting = False
			self._stop.clear()
			self._captured_seconds = 0.0
			self._feed_error = None
			self._session = session
			self._engine_session = engine_session
			self._reader = reader
			self._thread = Thread(
				target=self._run_capture,
				args=(reader, engine_session),
				name="transcription-capture",
				daemon=True,
			)
			self._state = RecordingState.RECORDING
			self._thread.start()

		logger.info("Recording started (language=%s)", language)
		return session

	async def stop_recording(self) -> TranscriptionResult:
		"""End the live session and return its transcription.

		The machine is back in IDLE when this returns or raises.
		"""
		session, engine_session = self._claim_session()
		try:
			await asyncio.to_thread(self._release_capture)
			segments = await self._lane.run(self._finish_on_engine, engine_session)
			result = TranscriptionResult.from_segments(segments, session.language)
		except CapabilityError as exc:
			with self._lock:
				self._state = RecordingState.ERROR
			logger.warning("Recording transcription failed: %s", exc)
			emit_history(
				self.history,
				HistoryRecord(kind="stt", content="microphone", result=exc.message, succeeded=False),
			)
			raise
		finally:
			self._reset()

		logger.info(
			"Recording stopped after %.1fs: %d segments",
			(_utcnow() - session.started_at).total_seconds(),
			len(result.segments),
		)
		emit_history(
			self.history,
			HistoryRecord(
				kind="stt",
				content="microphone",
				result=preview(result.text),
				succeeded=True,
				metadata={"language": session.language},
			),
		)
		return result

	def shutdown(self) -> None:
		"""Abandon an active session and stop the engine lane."""
		with self._lock:
			engine_session = self._engine_session
			active = self._state is not RecordingState.IDLE
		if active:
			logger.info("Abandoning active recording on shutdown")
			self._release_capture()
			if engine_session is not None:
				self._abandon(engine_session, None)
			self._reset()
		self._lane.shutdown()

	def _check_engine(self, language: str, local_only: bool) -> None:
		try:
			supported = self.engine.supports_language(language)
			local = not local_only or self.engine.can_run_locally()
		except Exception as exc:
			raise CapabilityError(
				ErrorKind.SERVICE_UNAVAILABLE, f"Speech recognizer is unavailable: {exc}", cause=exc
			) from exc
		if not supported:
			raise CapabilityError(
				ErrorKind.RECOGNIZER_NOT_AVAILABLE, f"Speech recognition is not available for language '{language}'"
			)
		if not local:
			raise CapabilityError(
				ErrorKind.SERVICE_UNAVAILABLE, "On-device recognition was required but is not available"
			)

	def _supported_on_engine(self) -> list[str]:
		try:
			return self.engine.supported_languages()
		except Exception as exc:
			raise CapabilityError(
				ErrorKind.SERVICE_UNAVAILABLE, f"Speech recognizer is unavailable: {exc}", cause=exc
			) from exc

	def _open_on_engine(self, language: str) -> RecognitionSession:
		self._check_engine(language, self.local_only)
		try:
			return self.engine.open_session(language, self.stream.audio_format())
		except EngineUnavailableError as exc:
			raise CapabilityError(ErrorKind.RECOGNIZER_NOT_AVAILABLE, str(exc), cause=exc) from exc
		except Exception as exc:
			raise CapabilityError(
				ErrorKind.RECOGNITION_FAILED, f"Cannot open a recognition session: {exc}", cause=exc
			) from exc

	def _open_microphone(self, engine_session: RecognitionSession) -> AudioStreamReader:
		"""Subscribe to and start the input stream; the engine session is cancelled on failure."""
		reader = None
		try:
			reader = self.stream.subscribe(name="transcription", max_frames=4096)
			self.stream.start()
		except DevicePermissionError as exc:
			self._abandon(engine_session, reader)
			raise CapabilityError(ErrorKind.NOT_AUTHORIZED, "Microphone access was denied", cause=exc) from exc
		except Exception as exc:
			self._abandon(engine_session, reader)
			raise CapabilityError(ErrorKind.SERVICE_UNAVAILABLE, f"Microphone is unavailable: {exc}", cause=exc) from exc
		return reader

	def _transcribe_on_engine(self, audio_path: Path, language: str, local_only: bool) -> TranscriptionResult:
		self._check_engine(language, local_only)
		try:
			segments = self.engine.transcribe_file(audio_path, language)
		except UnsupportedInputError as exc:
			raise CapabilityError(ErrorKind.INVALID_AUDIO, str(exc), cause=exc) from exc
		except EngineUnavailableError as exc:
			raise CapabilityError(ErrorKind.SERVICE_UNAVAILABLE, str(exc), cause=exc) from exc
		except Exception as exc:
			raise CapabilityError(ErrorKind.RECOGNITION_FAILED, f"Transcription failed: {exc}", cause=exc) from exc
		return TranscriptionResult.from_segments(segments, language)

	def _claim_session(self) -> tuple[RecordingSession, RecognitionSession]:
		with self._lock:
			if self._state is not RecordingState.RECORDING or self._session is None or self._engine_session is None:
				raise CapabilityError(ErrorKind.NOT_RECORDING, "No recording session is active")
			self._state = RecordingState.FINALIZING
			return self._session, self._engine_session

	def _release_capture(self) -> None:
		"""Stop the microphone, let the capture loop drain what is queued, then close the reader."""
		with self._lock:
			thread = self._thread
			reader = self._reader

		try:
			self.stream.stop()
		except Exception:
			logger.warning("Microphone stream did not stop cleanly", exc_info=True)
		self._stop.set()
		if thread is not None:
			thread.join(timeout=5.0)
		if reader is not None:
			reader.close()

	def _finish_on_engine(self, engine_session: RecognitionSession) -> list[Segment]:
		if self._feed_error is not None:
			try:
				engine_session.cancel()
			except Exception:
				logger.warning("Recognition session did not cancel cleanly", exc_info=True)
			raise CapabilityError(
				ErrorKind.RECOGNITION_FAILED,
				f"Feeding audio to the recognizer failed: {self._feed_error}",
				cause=self._feed_error,
			)
		try:
			return engine_session.finish()
		except Exception as exc:
			raise CapabilityError(ErrorKind.RECOGNITION_FAILED, f"Transcription failed: {exc}", cause=exc) from exc

	def _feed_on_engine(self, engine_session: RecognitionSession, frame: AudioFrame) -> None:
		if self._feed_error is not None:
			return
		try:
			engine_session.feed(frame)
		except Exception as exc:
			logger.warning("Recognizer rejected audio frame %d", frame.sequence, exc_info=True)
			self._feed_error = exc

	def _run_capture(self, reader: AudioStreamReader, engine_session: RecognitionSession) -> None:
		capped = False
		while True:
			draining = self._stop.is_set()
			frame = reader.read(timeout_seconds=0 if draining else 0.25)
			if frame is None:
				if draining:
					break
				continue
			if self._captured_seconds >= self.max_duration_seconds:
				if not capped:
					logger.warning("Recording reached %ds, dropping further audio", self.max_duration_seconds)
					capped = True
				continue
			self._captured_seconds += frame.duration_seconds
			# partial hypotheses are not surfaced
			self._lane.submit(self._feed_on_engine, engine_session, frame)

	def _abandon(self, engine_session: RecognitionSession, reader: AudioStreamReader | None) -> None:
		if reader is not None:
			reader.close()
		try:
			self._lane.submit(engine_session.cancel).result()
		except Exception:
			logger.warning("Recognition session did not cancel cleanly", exc_info=True)

	def _reset(self) -> None:
		with self._lock:
			self._session = None
			self._engine_session = None
			self._reader = None
			self._thread = None
			self._state = RecordingState.IDLE
