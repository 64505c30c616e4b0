import math
import os
from pathlib import Path
from typing import Any

import numpy as np
import whisper  # type: ignore
from whisper.tokenizer import LANGUAGES  # type: ignore

from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.domain.models import AudioFormat, AudioFrame, Segment
from local_ai_toolkit.ports.engine import EngineError, UnsupportedInputError

logger = get_logger("adapters.speech_to_text.whisper")

WHISPER_SAMPLE_RATE = 16000


def whisper_language(language: str) -> str:
	"""'en-US' -> 'en', 'zh-Hans' -> 'zh'."""
	return language.replace("_", "-").split("-")[0].lower()


def cached_checkpoint(model_name: str, download_root: str | None = None) -> str | None:
	"""Where load_model() would find the named checkpoint, or None for unknown names.

	whisper exposes the model names but not their file names, so the download
	URL table is read from the package.
	"""
	if model_name not in whisper.available_models():
		return None
	url = whisper._MODELS[model_name]
	root = download_root or os.path.join(
		os.getenv("XDG_CACHE_HOME", os.path.join(os.path.expanduser("~"), ".cache")), "whisper"
	)
	return os.path.join(root, os.path.basename(url))


class WhisperAdapter:
	def __init__(self, model_name: str, device: str = "cpu", download_root: str | None = None) -> None:
		self.model_name = model_name
		self.device = device
		self.download_root = download_root
		self._model: Any = None

	def _lazy_model(self) -> Any:
		if self._model is None:
			logger.info("Loading whisper model '%s' on %s", self.model_name, self.device)
			self._model = whisper.load_model(
				name=self.model_name,
				device=self.device,
				download_root=self.download_root,
			)
		return self._model

	def supports_language(self, language: str) -> bool:
		return whisper_language(language) in LANGUAGES

	def supported_languages(self) -> list[str]:
		return sorted(LANGUAGES)

	def can_run_locally(self) -> bool:
		"""Whisper runs on-device; only the checkpoint download needs the network."""
		if self._model is not None:
			return True
		if os.path.isfile(self.model_name):
			return True
		checkpoint = cached_checkpoint(self.model_name, self.download_root)
		return checkpoint is not None and os.path.isfile(checkpoint)

	def transcribe_file(self, audio_path: Path, language: str) -> list[Segment]:
		if not audio_path.exists():
			raise UnsupportedInputError(f"Audio file not found: {audio_path}")
		try:
			audio = whisper.load_audio(str(audio_path))
		except RuntimeError as exc:
			raise UnsupportedInputError(f"Audio could not be decoded: {exc}") from exc
		return self._transcribe_array(audio, language)

	def open_session(self, language: str, audio_format: AudioFormat) -> "WhisperSession":
		return WhisperSession(adapter=self, language=language, audio_format=audio_format)

	def _transcribe_array(self, audio: np.ndarray, language: str) -> list[Segment]:
		if audio.size == 0:
			return []
		model = self._lazy_model()
		try:
			result = model.transcribe(audio, language=whisper_language(language), fp16=False)
		except RuntimeError as exc:
			raise EngineError(f"whisper failed: {exc}") from exc
		return self._extract_segments(result)

	@staticmethod
	def _extract_segments(result: dict[str, Any]) -> list[Segment]:
		segments: list[Segment] = []
		for seg in result.get("segments") or []:
			text = str(seg.get("text", "")).strip()
			if not text:
				continue
			start = float(seg.get("start", 0.0))
			end = float(seg.get("end", start))
			# avg_logprob is a mean token log-probability
			confidence = math.exp(float(seg.get("avg_logprob", 0.0)))
			segments.append(
				Segment(
					text=text,
					start=start,
					duration=max(end - start, 0.0),
					confidence=min(max(confidence, 0.0), 1.0),
				)
			)
		return segments


class WhisperSession:
	"""Buffers live frames; whisper produces a result only once audio ends."""

	def __init__(self, adapter: WhisperAdapter, language: str, audio_format: AudioFormat) -> None:
		self._adapter = adapter
		self._language = language
		self._format = audio_format
		self._chunks: list[np.ndarray] = []

	def feed(self, frame: AudioFrame) -> str | None:
		self._chunks.append(frame.to_mono_float32())
		return None

	def finish(self) -> list[Segment]:
		chunks, self._chunks = self._chunks, []
		if not chunks:
			return []
		audio = _resample(np.concatenate(chunks), self._format.sample_rate, WHISPER_SAMPLE_RATE)
		return self._adapter._transcribe_array(audio, self._language)

	def cancel(self) -> None:
		self._chunks = []


def _resample(audio: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
	if source_rate == target_rate or audio.size == 0:
		return audio.astype(np.float32, copy=False)
	duration = audio.shape[0] / source_rate
	target_length = max(int(round(duration * target_rate)), 1)
	old_times = np.linspace(0.0, duration, num=audio.shape[0], endpoint=False)
	new_times = np.linspace(0.0, duration, num=target_length, endpoint=False)
	return np.interp(new_times, old_times, audio).astype(np.float32)
