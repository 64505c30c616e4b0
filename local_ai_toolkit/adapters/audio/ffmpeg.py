import subprocess
from pathlib import Path

import numpy as np

from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.domain.models import AudioExportFormat
from local_ai_toolkit.ports.engine import EngineError, EngineUnavailableError, UnsupportedInputError

logger = get_logger("adapters.audio.ffmpeg")

# codec and muxer per container
_ENCODERS: dict[AudioExportFormat, list[str]] = {
    AudioExportFormat.MP3: ["-acodec", "libmp3lame", "-q:a", "4", "-f", "mp3"],
    AudioExportFormat.WAV: ["-acodec", "pcm_s16le", "-f", "wav"],
    AudioExportFormat.AAC: ["-acodec", "aac", "-b:a", "128k", "-f", "adts"],
    AudioExportFormat.M4A: ["-acodec", "aac", "-b:a", "128k", "-f", "ipod"],
}


class AudioConverterAdapter:
    """Wraps the ffmpeg CLI for container encoding and PCM decoding."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", sample_rate: int = 22050, channels: int = 1) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.sample_rate = sample_rate
        self.channels = channels

    def encode_file(self, src: Path, dst: Path, fmt: AudioExportFormat, *, pitch: float = 1.0) -> Path:
        if not src.exists():
            raise UnsupportedInputError(f"Source audio not found: {src}")

        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-i",
            str(src),
            *self._pitch_filter(pitch),
            "-ac",
            str(self.channels),
            "-ar",
            str(self.sample_rate),
            *_ENCODERS[fmt],
            str(dst),
        ]
        self._run(cmd)
        return dst

    def decode_file(self, src: Path, *, pitch: float = 1.0) -> tuple[np.ndarray, int]:
        if not src.exists():
            raise UnsupportedInputError(f"Source audio not found: {src}")

        cmd = [
            self.ffmpeg_bin,
            "-i",
            str(src),
            *self._pitch_filter(pitch),
            "-ac",
            "1",
            "-ar",
            str(self.sample_rate),
            "-f",
            "f32le",
            "-",
        ]
        raw = self._run_capture(cmd)
        return np.frombuffer(raw, dtype=np.float32).copy(), self.sample_rate

    def _pitch_filter(self, pitch: float) -> list[str]:
        if abs(pitch - 1.0) < 1e-3:
            return []
        # resample up/down then restore tempo so only the pitch moves
        sr = self.sample_rate
        chain = f"aresample={sr},asetrate={int(round(sr * pitch))},aresample={sr},atempo={1.0 / pitch:.6f}"
        return ["-af", chain]

    def _run(self, cmd: list[str]) -> None:
        self._run_capture(cmd)

    def _run_capture(self, cmd: list[str]) -> bytes:
        logger.debug("Running %s", " ".join(cmd))
        try:
            proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except FileNotFoundError as exc:
            raise EngineUnavailableError(f"ffmpeg binary not found: {self.ffmpeg_bin}") from exc
        if proc.returncode != 0:
            raise EngineError(f"ffmpeg failed: {proc.stderr.decode(errors='ignore').strip()[-500:]}")
        return proc.stdout
