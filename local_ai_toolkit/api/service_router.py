from fastapi import APIRouter, Depends, Query, Request, Response

from local_ai_toolkit.api.guards import require_api_key, run_bounded
from local_ai_toolkit.api.response_models import (
    HealthResponse,
    RecognitionResponse,
    StatsResponse,
    SynthesisPayload,
    TranscriptionResponse,
    VoiceResponse,
)
from local_ai_toolkit.api.staging import read_capped_body, stage_capped_body, staged_file
from local_ai_toolkit.core.config import APP_VERSION, AppConfig
from local_ai_toolkit.core.counter import RequestCounter
from local_ai_toolkit.core.di import (
    get_config,
    get_recognition_service,
    get_request_counter,
    get_synthesis_service,
    get_transcription_service,
)
from local_ai_toolkit.core.errors import ErrorKind
from local_ai_toolkit.services.recognition import RecognitionService
from local_ai_toolkit.services.synthesis import SynthesisService, parse_export_format
from local_ai_toolkit.services.transcription import TranscriptionService

health_router = APIRouter(tags=["health"])
router = APIRouter(tags=["capabilities"], dependencies=[Depends(require_api_key)])


@health_router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(version=APP_VERSION)


@router.get("/stats", response_model=StatsResponse)
def stats(counter: RequestCounter = Depends(get_request_counter)) -> StatsResponse:
    """Number of successful capability calls since startup."""
    return StatsResponse(request_count=counter.value)


@router.post("/ocr", response_model=RecognitionResponse)
async def recognize_text(
    request: Request,
    language: str | None = Query(default=None),
    recognition_level: str | None = Query(default=None, alias="recognitionLevel"),
    config: AppConfig = Depends(get_config),
    recognizer: RecognitionService = Depends(get_recognition_service),
    counter: RequestCounter = Depends(get_request_counter),
) -> RecognitionResponse:
    """Recognize text in a raw image body."""
    image = await read_capped_body(request, config.server.max_image_bytes, ErrorKind.INVALID_IMAGE)
    result = await run_bounded(
        recognizer.recognize(image, language_hint=language, level=recognition_level),
        config.server.request_timeout_seconds,
    )
    counter.increment()
    return RecognitionResponse.from_result(result)


@router.get("/ocr/languages", response_model=list[str])
async def recognition_languages(
    recognizer: RecognitionService = Depends(get_recognition_service),
    counter: RequestCounter = Depends(get_request_counter),
) -> list[str]:
    languages = await recognizer.supported_languages()
    counter.increment()
    return languages


@router.post("/tts")
async def synthesize_speech(
    payload: SynthesisPayload,
    config: AppConfig = Depends(get_config),
    synthesizer: SynthesisService = Depends(get_synthesis_service),
    counter: RequestCounter = Depends(get_request_counter),
) -> Response:
    """Synthesize speech and return the encoded audio."""
    fmt = parse_export_format(payload.output_format or config.tts.default_format)
    synthesis_request = payload.to_request(default_rate=config.tts.default_rate)
    with staged_file(config.paths.tmp_dir, suffix=f".{fmt.file_extension}") as staged:
        await run_bounded(
            synthesizer.synthesize_to_file(synthesis_request, staged.path, fmt),
            config.server.request_timeout_seconds,
            on_timeout=staged.hold_until,
        )
        audio = staged.path.read_bytes()
    counter.increment()
    return Response(content=audio, media_type=fmt.content_type)


@router.get("/tts/voices", response_model=list[VoiceResponse])
async def list_voices(
    language: str | None = Query(default=None),
    synthesizer: SynthesisService = Depends(get_synthesis_service),
    counter: RequestCounter = Depends(get_request_counter),
) -> list[VoiceResponse]:
    if language:
        voices = await synthesizer.voices_for_language(language)
    else:
        voices = await synthesizer.available_voices()
    counter.increment()
    return [VoiceResponse.from_voice(voice) for voice in voices]


@router.post("/stt", response_model=TranscriptionResponse)
async def transcribe_audio(
    request: Request,
    language: str | None = Query(default=None),
    config: AppConfig = Depends(get_config),
    transcriber: TranscriptionService = Depends(get_transcription_service),
    counter: RequestCounter = Depends(get_request_counter),
) -> TranscriptionResponse:
    """Transcribe a raw audio body. This route never requires on-device recognition."""
    with staged_file(config.paths.tmp_dir, suffix=".audio") as staged:
        await stage_capped_body(request, staged.path, config.server.max_audio_bytes, ErrorKind.INVALID_AUDIO)
        result = await run_bounded(
            transcriber.transcribe(staged.path, language=language, local_only=False),
            config.server.request_timeout_seconds,
            on_timeout=staged.hold_until,
        )
    counter.increment()
    return TranscriptionResponse.from_result(result)
