import asyncio
import shutil
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock

from local_ai_toolkit.core.errors import CapabilityError, ErrorKind
from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.domain.models import AudioExportFormat, HistoryRecord, SynthesisRequest, Voice
from local_ai_toolkit.ports.engine import EngineUnavailableError
from local_ai_toolkit.ports.history import HistorySinkPort
from local_ai_toolkit.ports.tts import AudioCodecPort, AudioPlaybackPort, SpeechSynthesisPort
from local_ai_toolkit.services.serial import EngineLane, emit_history, preview

logger = get_logger("services.synthesis")

BASE_WORDS_PER_MINUTE = 80
WORDS_PER_MINUTE_SPAN = 240


def words_per_minute(rate: float) -> int:
    """0.5 maps onto the engine's normal speaking rate (200 wpm)."""
    return int(round(BASE_WORDS_PER_MINUTE + rate * WORDS_PER_MINUTE_SPAN))


def parse_export_format(value: AudioExportFormat | str) -> AudioExportFormat:
    try:
        return AudioExportFormat(str(value).lower())
    except ValueError as exc:
        allowed = ", ".join(fmt.value for fmt in AudioExportFormat)
        raise CapabilityError(
            ErrorKind.INVALID_CONFIGURATION, f"Unsupported output format '{value}', expected one of: {allowed}"
        ) from exc


def _language_family(tag: str) -> str:
    return tag.replace("_", "-").split("-")[0].lower()


def _move_into_place(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(src), str(dst))


@dataclass(slots=True)
class SynthesisService:
    """Speaks text aloud or renders it into an audio file.

    Rendering always happens on the engine lane. Playback is exclusive: one
    utterance at a time, cancellable through stop().
    """

    engine: SpeechSynthesisPort
    codec: AudioCodecPort
    playback: AudioPlaybackPort
    tmp_dir: Path
    default_voice: str = ""
    default_language: str = "en-US"
    history: HistorySinkPort | None = None
    _lane: EngineLane = field(default_factory=lambda: EngineLane("tts-engine"), init=False)
    _lock: Lock = field(default_factory=Lock, init=False)
    _playing: bool = field(default=False, init=False)
    _stop_requested: bool = field(default=False, init=False)

    @property
    def is_playing(self) -> bool:
        return self._playing

    async def available_voices(self) -> list[Voice]:
        return await self._lane.run(self._voices_on_engine)

    async def voices_for_language(self, language: str) -> list[Voice]:
        family = _language_family(language)
        return [voice for voice in await self.available_voices() if _language_family(voice.language) == family]

    async def speak(self, request: SynthesisRequest) -> None:
        self.validate(request)
        with self._lock:
            if self._playing:
                raise CapabilityError(ErrorKind.ALREADY_PLAYING, "Speech playback already in progress")
            self._playing = True
            self._stop_requested = False

        wav_path = self._scratch_path("wav")
        started = time.monotonic()
        try:
            voice_id = await self._lane.run(self._resolve_voice, request)
            await self._lane.run(self._render_on_engine, request, voice_id, wav_path)
            samples, sample_rate = await asyncio.to_thread(self._decode, wav_path, request.pitch)
            self._raise_if_stopped()
            await self._play_until_finished(samples, sample_rate)
            self._raise_if_stopped()
        except CapabilityError as exc:
            self._log_failure("Speak", exc)
            emit_history(
                self.history,
                HistoryRecord(kind="tts", content=preview(request.text), result=exc.message, succeeded=False),
            )
            raise
        finally:
            self.playback.stop()
            wav_path.unlink(missing_ok=True)
            with self._lock:
                self._playing = False

        logger.info("Spoke %d chars in %.0fms", len(request.text), (time.monotonic() - started) * 1000)
        emit_history(
            self.history,
            HistoryRecord(kind="tts", content=preview(request.text), result="spoken", succeeded=True),
        )

    def stop(self) -> None:
        with self._lock:
            if not self._playing:
                return
            self._stop_requested = True
        logger.info("Stopping speech playback")
        self.playback.stop()

    async def synthesize_to_file(
        self,
        request: SynthesisRequest,
        output_path: Path,
        output_format: AudioExportFormat | str = AudioExportFormat.MP3,
    ) -> None:
        fmt = parse_export_format(output_format)
        self.validate(request)

        wav_path = self._scratch_path("wav")
        encoded_path = self._scratch_path(fmt.file_extension)
        started = time.monotonic()
        try:
            voice_id = await self._lane.run(self._resolve_voice, request)
            await self._lane.run(self._render_on_engine, request, voice_id, wav_path)
            await asyncio.to_thread(self._encode, wav_path, encoded_path, fmt, request.pitch)
            try:
                await asyncio.to_thread(_move_into_place, encoded_path, output_path)
            except OSError as exc:
                raise CapabilityError(
                    ErrorKind.FILE_WRITE_FAILED, f"Cannot write audio to {output_path}: {exc}", cause=exc
                ) from exc
        except CapabilityError as exc:
            self._log_failure("Synthesis", exc)
            emit_history(
                self.history,
                HistoryRecord(kind="tts", content=preview(request.text), result=exc.message, succeeded=False),
            )
            raise
        finally:
            wav_path.unlink(missing_ok=True)
            encoded_path.unlink(missing_ok=True)

        logger.info(
            "Synthesized %d chars to %s (%s) in %.0fms",
            len(request.text),
            output_path,
            fmt.value,
            (time.monotonic() - started) * 1000,
        )
        emit_history(
            self.history,
            HistoryRecord(
                kind="tts",
                content=preview(request.text),
                result=str(output_path),
                succeeded=True,
                metadata={"format": fmt.value},
            ),
        )

    def validate(self, request: SynthesisRequest) -> None:
        if not request.text or not request.text.strip():
            raise CapabilityError(ErrorKind.INVALID_TEXT, "Text must not be empty")
        problems = request.out_of_range()
        if problems:
            raise CapabilityError(ErrorKind.INVALID_CONFIGURATION, "; ".join(problems))

    def shutdown(self) -> None:
        self.stop()
        self._lane.shutdown()

    def _scratch_path(self, extension: str) -> Path:
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        return self.tmp_dir / f"tts-{uuid.uuid4().hex}.{extension}"

    def _raise_if_stopped(self) -> None:
        if self._stop_requested:
            raise CapabilityError(ErrorKind.CANCELLED, "Speech playback was stopped")

    def _log_failure(self, action: str, exc: CapabilityError) -> None:
        if exc.kind is ErrorKind.CANCELLED:
            logger.info("%s cancelled", action)
        else:
            logger.warning("%s failed: %s", action, exc)

    async def _play_until_finished(self, samples, sample_rate: int) -> None:
        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()

        def _resolve() -> None:
            if not done.done():
                done.set_result(None)

        def _on_finished() -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve)

        try:
            self.playback.play(samples, sample_rate, _on_finished)
        except EngineUnavailableError as exc:
            raise CapabilityError(ErrorKind.SERVICE_UNAVAILABLE, str(exc), cause=exc) from exc
        except Exception as exc:
            raise CapabilityError(ErrorKind.SYNTHESIZE_FAILED, f"Audio playback failed: {exc}", cause=exc) from exc
        await done

    def _voices_on_engine(self) -> list[Voice]:
        try:
            return self.engine.voices()
        except EngineUnavailableError as exc:
            raise CapabilityError(ErrorKind.SERVICE_UNAVAILABLE, str(exc), cause=exc) from exc
        except Exception as exc:
            raise CapabilityError(ErrorKind.SYNTHESIZE_FAILED, f"Listing voices failed: {exc}", cause=exc) from exc

    def _resolve_voice(self, request: SynthesisRequest) -> str | None:
        voices = self._voices_on_engine()
        if request.voice:
            if not any(voice.identifier == request.voice for voice in voices):
                raise CapabilityError(ErrorKind.VOICE_NOT_FOUND, f"Voice '{request.voice}' is not installed")
            return request.voice

        if self.default_voice and any(voice.identifier == self.default_voice for voice in voices):
            return self.default_voice

        language = request.language or self.default_language
        exact = [voice for voice in voices if voice.language.lower() == language.lower()]
        if exact:
            return exact[0].identifier
        family = _language_family(language)
        related = [voice for voice in voices if _language_family(voice.language) == family]
        if related:
            return related[0].identifier
        # engine default
        return None

    def _render_on_engine(self, request: SynthesisRequest, voice_id: str | None, output_path: Path) -> None:
        try:
            self.engine.render_to_wav(
                request.text,
                output_path,
                voice_id=voice_id,
                words_per_minute=words_per_minute(request.rate),
                volume=request.volume,
            )
        except EngineUnavailableError as exc:
            raise CapabilityError(ErrorKind.SERVICE_UNAVAILABLE, str(exc), cause=exc) from exc
        except Exception as exc:
            raise CapabilityError(ErrorKind.SYNTHESIZE_FAILED, f"Speech synthesis failed: {exc}", cause=exc) from exc

    def _decode(self, wav_path: Path, pitch: float):
        try:
            return self.codec.decode_file(wav_path, pitch=pitch)
        except EngineUnavailableError as exc:
            raise CapabilityError(ErrorKind.SERVICE_UNAVAILABLE, str(exc), cause=exc) from exc
        except Exception as exc:
            raise CapabilityError(ErrorKind.SYNTHESIZE_FAILED, f"Audio decoding failed: {exc}", cause=exc) from exc

    def _encode(self, wav_path: Path, encoded_path: Path, fmt: AudioExportFormat, pitch: float) -> None:
        try:
            self.codec.encode_file(wav_path, encoded_path, fmt, pitch=pitch)
        except EngineUnavailableError as exc:
            raise CapabilityError(ErrorKind.SERVICE_UNAVAILABLE, str(exc), cause=exc) from exc
        except Exception as exc:
            raise CapabilityError(ErrorKind.SYNTHESIZE_FAILED, f"Audio encoding failed: {exc}", cause=exc) from exc
