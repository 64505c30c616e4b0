import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, cast

import dotenv
import yaml

APP_VERSION = "0.1.0"
DEFAULT_PORT = 19527
MEGABYTE = 1024 * 1024


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    auth_key: str = ""
    max_image_bytes: int = 50 * MEGABYTE
    max_audio_bytes: int = 100 * MEGABYTE
    request_timeout_seconds: float = 0.0


@dataclass(frozen=True)
class PathsConfig:
    tmp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "local-ai-toolkit")
    data_dir: Path = field(default_factory=lambda: Path("~/.local/share/local-ai-toolkit").expanduser())
    history_file: Path | None = None

    @property
    def resolved_history_file(self) -> Path:
        return self.history_file or self.data_dir / "history.jsonl"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    json_output: bool = False
    format: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    rotate_max_bytes: int = 5 * MEGABYTE
    rotate_backup_count: int = 3


@dataclass(frozen=True)
class OcrConfig:
    default_language: str = "en-US"
    recognition_level: str = "accurate"
    tesseract_cmd: str | None = None


@dataclass(frozen=True)
class TtsConfig:
    default_voice: str = ""
    default_language: str = "en-US"
    default_rate: float = 0.5
    default_format: str = "mp3"


@dataclass(frozen=True)
class SttConfig:
    default_language: str = "en-US"
    local_only: bool = False


@dataclass(frozen=True)
class AudioConfig:
    samplerate: int = 16000
    channels: int = 1
    blocksize: int = 1024
    dtype: str = "float32"


@dataclass(frozen=True)
class RecordingConfig:
    max_duration_seconds: int = 300


@dataclass(frozen=True)
class FfmpegConfig:
    binary: str = "ffmpeg"
    sample_rate: int = 22050
    channels: int = 1


@dataclass(frozen=True)
class WhisperConfig:
    model: str = "base"
    device: str = "cpu"
    download_root: str | None = None


@dataclass(frozen=True)
class HistoryConfig:
    enabled: bool = True
    max_items: int = 1000


@dataclass(frozen=True)
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    ocr: OcrConfig = field(default_factory=OcrConfig)
    tts: TtsConfig = field(default_factory=TtsConfig)
    stt: SttConfig = field(default_factory=SttConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    ffmpeg: FfmpegConfig = field(default_factory=FfmpegConfig)
    whisper: WhisperConfig = field(default_factory=WhisperConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    config_path: Path | None = None


def load_config(config_path: Path | None = None, *, load_env: bool = True) -> AppConfig:
    """Build AppConfig from `.env`, the optional YAML file and env overrides.

    The YAML file is taken from ``config_path`` or the ``CONFIG_PATH`` env var.
    Without either, defaults are used.
    """
    if load_env:
        repo_root = Path(__file__).resolve().parents[2]
        dotenv.load_dotenv(repo_root / ".env")

    if config_path is None:
        config_path_env = os.getenv("CONFIG_PATH")
        config_path = Path(config_path_env).expanduser() if config_path_env else None

    raw: dict[str, Any] = _load_yaml(config_path) if config_path is not None else {}

    server = _load_server(_get_optional_mapping(raw, "server"))
    paths = _load_paths(_get_optional_mapping(raw, "paths"))
    logging_cfg = _load_logging(_get_optional_mapping(raw, "logging"))

    ocr = _get_optional_mapping(raw, "ocr")
    level = str(ocr.get("recognition_level", OcrConfig.recognition_level))
    if level not in ("fast", "accurate"):
        raise ValueError(f"ocr.recognition_level must be 'fast' or 'accurate', got '{level}'")
    tesseract_cmd = ocr.get("tesseract_cmd")

    tts = _get_optional_mapping(raw, "tts")
    stt = _get_optional_mapping(raw, "stt")
    audio = _get_optional_mapping(raw, "audio")
    recording = _get_optional_mapping(raw, "recording")
    ffmpeg = _get_optional_mapping(raw, "ffmpeg")
    whisper = _get_optional_mapping(raw, "whisper")
    history = _get_optional_mapping(raw, "history")

    download_root_raw = whisper.get("download_root")

    return AppConfig(
        server=server,
        paths=paths,
        logging=logging_cfg,
        ocr=OcrConfig(
            default_language=str(ocr.get("default_language", OcrConfig.default_language)),
            recognition_level=level,
            tesseract_cmd=str(tesseract_cmd) if tesseract_cmd else None,
        ),
        tts=TtsConfig(
            default_voice=str(tts.get("default_voice") or ""),
            default_language=str(tts.get("default_language", TtsConfig.default_language)),
            default_rate=float(tts.get("default_rate", TtsConfig.default_rate)),
            default_format=str(tts.get("default_format", TtsConfig.default_format)),
        ),
        stt=SttConfig(
            default_language=str(stt.get("default_language", SttConfig.default_language)),
            local_only=bool(stt.get("local_only", SttConfig.local_only)),
        ),
        audio=AudioConfig(
            samplerate=int(audio.get("samplerate", AudioConfig.samplerate)),
            channels=int(audio.get("channels", AudioConfig.channels)),
            blocksize=int(audio.get("blocksize", AudioConfig.blocksize)),
            dtype=str(audio.get("dtype", AudioConfig.dtype)),
        ),
        recording=RecordingConfig(
            max_duration_seconds=int(recording.get("max_duration_seconds", RecordingConfig.max_duration_seconds)),
        ),
        ffmpeg=FfmpegConfig(
            binary=str(ffmpeg.get("binary", FfmpegConfig.binary)),
            sample_rate=int(ffmpeg.get("sample_rate", FfmpegConfig.sample_rate)),
            channels=int(ffmpeg.get("channels", FfmpegConfig.channels)),
        ),
        whisper=WhisperConfig(
            model=str(whisper.get("model", WhisperConfig.model)),
            device=str(whisper.get("device", WhisperConfig.device)),
            download_root=str(Path(download_root_raw).expanduser()) if download_root_raw else None,
        ),
        history=HistoryConfig(
            enabled=bool(history.get("enabled", HistoryConfig.enabled)),
            max_items=int(history.get("max_items", HistoryConfig.max_items)),
        ),
        config_path=config_path,
    )


def _load_server(server: Mapping[str, Any]) -> ServerConfig:
    port_env = os.getenv("LAT_PORT")
    port = int(port_env) if port_env else int(server.get("port", ServerConfig.port))
    if not 0 < port < 65536:
        raise ValueError(f"server.port out of range: {port}")
    return ServerConfig(
        host=os.getenv("LAT_HOST") or str(server.get("host", ServerConfig.host)),
        port=port,
        auth_key=os.getenv("LAT_AUTH_KEY") or str(server.get("auth_key") or ""),
        max_image_bytes=int(server.get("max_image_bytes", ServerConfig.max_image_bytes)),
        max_audio_bytes=int(server.get("max_audio_bytes", ServerConfig.max_audio_bytes)),
        request_timeout_seconds=float(server.get("request_timeout_seconds", ServerConfig.request_timeout_seconds)),
    )


def _load_paths(paths: Mapping[str, Any]) -> PathsConfig:
    defaults = PathsConfig()
    tmp_raw = os.getenv("TMP_DIR") or paths.get("tmp_dir")
    data_raw = os.getenv("FS_DIR") or paths.get("data_dir")
    history_raw = paths.get("history_file")
    return PathsConfig(
        tmp_dir=Path(str(tmp_raw)).expanduser() if tmp_raw else defaults.tmp_dir,
        data_dir=Path(str(data_raw)).expanduser() if data_raw else defaults.data_dir,
        history_file=Path(str(history_raw)).expanduser() if history_raw else None,
    )


def _load_logging(raw: Mapping[str, Any]) -> LoggingConfig:
    level = str(raw.get("level", LoggingConfig.level)).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ValueError(f"logging.level is not a valid level: {level}")
    return LoggingConfig(
        level=level,
        json_output=bool(raw.get("json_output", LoggingConfig.json_output)),
        format=str(raw.get("format", LoggingConfig.format)),
        rotate_max_bytes=int(raw.get("rotate_max_bytes", LoggingConfig.rotate_max_bytes)),
        rotate_backup_count=int(raw.get("rotate_backup_count", LoggingConfig.rotate_backup_count)),
    )


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping")
    return cast(dict[str, Any], data)


def _get_optional_mapping(raw: Mapping[str, Any], key: str) -> dict[str, Any]:
    v = raw.get(key, {})
    if v is None:
        return {}
    if not isinstance(v, Mapping):
        raise ValueError(f"Section '{key}' must be a mapping")
    return dict(cast(Mapping[str, Any], v))
