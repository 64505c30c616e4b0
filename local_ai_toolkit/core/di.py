"""Singleton providers wired into FastAPI through Depends.

Engine adapters are imported inside their providers so that loading the API
does not require PortAudio, torch or a speech driver until a capability is
actually used.
"""

from functools import lru_cache

from local_ai_toolkit.core.config import AppConfig, load_config
from local_ai_toolkit.core.counter import RequestCounter
from local_ai_toolkit.domain.models import AudioFormat, RecognitionLevel
from local_ai_toolkit.ports.audiostream import AudioStreamPort
from local_ai_toolkit.ports.history import HistorySinkPort
from local_ai_toolkit.ports.tts import AudioCodecPort
from local_ai_toolkit.services.recognition import RecognitionService
from local_ai_toolkit.services.synthesis import SynthesisService
from local_ai_toolkit.services.transcription import TranscriptionService


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get singleton AppConfig instance."""
    return load_config()


@lru_cache(maxsize=1)
def get_audio_format() -> AudioFormat:
    """Get AudioFormat from config."""
    cfg = get_config()
    return AudioFormat(
        sample_rate=cfg.audio.samplerate,
        channels=cfg.audio.channels,
        blocksize=cfg.audio.blocksize,
        dtype=cfg.audio.dtype,
    )


@lru_cache(maxsize=1)
def get_audio_stream() -> AudioStreamPort:
    """Get singleton microphone stream adapter."""
    from local_ai_toolkit.adapters.audio.sddevice import SoundDeviceAudioStreamAdapter

    return SoundDeviceAudioStreamAdapter(audio_format=get_audio_format())


@lru_cache(maxsize=1)
def get_audio_converter() -> AudioCodecPort:
    from local_ai_toolkit.adapters.audio.ffmpeg import AudioConverterAdapter

    cfg = get_config()
    return AudioConverterAdapter(
        ffmpeg_bin=cfg.ffmpeg.binary,
        sample_rate=cfg.ffmpeg.sample_rate,
        channels=cfg.ffmpeg.channels,
    )


@lru_cache(maxsize=1)
def get_history_sink() -> HistorySinkPort | None:
    """None when history is disabled."""
    from local_ai_toolkit.adapters.history.jsonl import JsonlHistoryAdapter

    cfg = get_config()
    if not cfg.history.enabled:
        return None
    return JsonlHistoryAdapter(path=cfg.paths.resolved_history_file, max_items=cfg.history.max_items)


@lru_cache(maxsize=1)
def get_request_counter() -> RequestCounter:
    return RequestCounter()


@lru_cache(maxsize=1)
def get_recognition_service() -> RecognitionService:
    """Get singleton RecognitionService."""
    from local_ai_toolkit.adapters.ocr.tesseract import TesseractAdapter

    cfg = get_config()
    return RecognitionService(
        engine=TesseractAdapter(tesseract_cmd=cfg.ocr.tesseract_cmd),
        default_language=cfg.ocr.default_language,
        default_level=RecognitionLevel(cfg.ocr.recognition_level),
        history=get_history_sink(),
    )


@lru_cache(maxsize=1)
def get_synthesis_service() -> SynthesisService:
    """Get singleton SynthesisService."""
    from local_ai_toolkit.adapters.audio.playback import SoundDevicePlaybackAdapter
    from local_ai_toolkit.adapters.text_to_speech.pyttsx3 import Pyttsx3Adapter

    cfg = get_config()
    return SynthesisService(
        engine=Pyttsx3Adapter(),
        codec=get_audio_converter(),
        playback=SoundDevicePlaybackAdapter(),
        tmp_dir=cfg.paths.tmp_dir,
        default_voice=cfg.tts.default_voice,
        default_language=cfg.tts.default_language,
        history=get_history_sink(),
    )


@lru_cache(maxsize=1)
def get_transcription_service() -> TranscriptionService:
    """Get singleton TranscriptionService."""
    from local_ai_toolkit.adapters.speech_to_text.whisper import WhisperAdapter

    cfg = get_config()
    return TranscriptionService(
        engine=WhisperAdapter(
            model_name=cfg.whisper.model,
            device=cfg.whisper.device,
            download_root=cfg.whisper.download_root,
        ),
        stream=get_audio_stream(),
        default_language=cfg.stt.default_language,
        local_only=cfg.stt.local_only,
        max_duration_seconds=cfg.recording.max_duration_seconds,
        history=get_history_sink(),
    )
