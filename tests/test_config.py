"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from local_ai_toolkit.core.config import DEFAULT_PORT, load_config

_ENV_KEYS = ("CONFIG_PATH", "LAT_HOST", "LAT_PORT", "LAT_AUTH_KEY", "TMP_DIR", "FS_DIR")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_defaults_without_file(self) -> None:
        cfg = load_config(load_env=False)

        assert cfg.server.host == "127.0.0.1"
        assert cfg.server.port == DEFAULT_PORT
        assert cfg.server.auth_key == ""
        assert cfg.server.max_image_bytes == 50 * 1024 * 1024
        assert cfg.server.max_audio_bytes == 100 * 1024 * 1024
        assert cfg.ocr.recognition_level == "accurate"
        assert cfg.tts.default_format == "mp3"
        assert cfg.config_path is None

    def test_yaml_sections(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
server:
  port: 20000
  auth_key: s3cret
  request_timeout_seconds: 2.5
paths:
  tmp_dir: {tmp}
  data_dir: {data}
ocr:
  recognition_level: fast
  default_language: zh-Hans
stt:
  local_only: true
whisper:
  model: small
history:
  max_items: 10
""".format(tmp=tmp_path / "t", data=tmp_path / "d"),
        )

        cfg = load_config(path, load_env=False)

        assert cfg.server.port == 20000
        assert cfg.server.auth_key == "s3cret"
        assert cfg.server.request_timeout_seconds == 2.5
        assert cfg.paths.tmp_dir == tmp_path / "t"
        assert cfg.paths.resolved_history_file == tmp_path / "d" / "history.jsonl"
        assert cfg.ocr.recognition_level == "fast"
        assert cfg.ocr.default_language == "zh-Hans"
        assert cfg.stt.local_only is True
        assert cfg.whisper.model == "small"
        assert cfg.history.max_items == 10
        assert cfg.config_path == path

    def test_config_path_env_and_overrides(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path, "server:\n  port: 20000\n  host: 0.0.0.0\n")
        monkeypatch.setenv("CONFIG_PATH", str(path))
        monkeypatch.setenv("LAT_PORT", "21000")
        monkeypatch.setenv("LAT_AUTH_KEY", "from-env")

        cfg = load_config(load_env=False)

        assert cfg.server.port == 21000
        assert cfg.server.host == "0.0.0.0"
        assert cfg.server.auth_key == "from-env"

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        cfg = load_config(_write(tmp_path, ""), load_env=False)

        assert cfg.server.port == DEFAULT_PORT

    @pytest.mark.parametrize(
        "text",
        [
            "ocr:\n  recognition_level: slow\n",
            "logging:\n  level: chatty\n",
            "server:\n  port: 70000\n",
            "server: [1, 2]\n",
            "- just\n- a list\n",
        ],
    )
    def test_malformed_values_raise(self, tmp_path: Path, text: str) -> None:
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, text), load_env=False)

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml", load_env=False)
