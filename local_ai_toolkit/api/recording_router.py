from fastapi import APIRouter, Depends, Query

from local_ai_toolkit.api.guards import require_api_key
from local_ai_toolkit.api.response_models import StartRecordingResponse, TranscriptionResponse
from local_ai_toolkit.core.counter import RequestCounter
from local_ai_toolkit.core.di import get_request_counter, get_transcription_service
from local_ai_toolkit.services.transcription import TranscriptionService

router = APIRouter(prefix="/stt/recording", tags=["recording"], dependencies=[Depends(require_api_key)])


@router.post("/start", response_model=StartRecordingResponse)
def start_recording(
    language: str | None = Query(default=None),
    transcriber: TranscriptionService = Depends(get_transcription_service),
    counter: RequestCounter = Depends(get_request_counter),
) -> StartRecordingResponse:
    """Open the microphone and start a live transcription session."""
    session = transcriber.start_recording(language)
    counter.increment()
    return StartRecordingResponse.from_session(session)


@router.post("/stop", response_model=TranscriptionResponse)
async def stop_recording(
    transcriber: TranscriptionService = Depends(get_transcription_service),
    counter: RequestCounter = Depends(get_request_counter),
) -> TranscriptionResponse:
    """Stop the live session and return its transcription."""
    result = await transcriber.stop_recording()
    counter.increment()
    return TranscriptionResponse.from_result(result)
