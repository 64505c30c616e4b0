import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from local_ai_toolkit.core.config import LoggingConfig

ROOT_LOGGER_NAME = "local_ai_toolkit"

# Attributes every LogRecord carries; anything else was passed through `extra=`.
_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "message",
        "taskName",
        "thread",
        "threadName",
    }
)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, including `extra=` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                payload[key] = value

        return json.dumps(payload, default=str)


def setup_logging(config: LoggingConfig, log_dir: Path) -> None:
    """
    Configure the application logger tree.

    Args:
        config: Logging section of the app config.
        log_dir: Directory receiving app.log (paths.data_dir).
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "app.log"

    formatter: logging.Formatter = JsonFormatter() if config.json_output else logging.Formatter(config.format)

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    app_logger.setLevel(config.level)
    app_logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(config.level)
    console.setFormatter(formatter)
    app_logger.addHandler(console)

    rotating = RotatingFileHandler(
        filename=log_file,
        maxBytes=config.rotate_max_bytes,
        backupCount=config.rotate_backup_count,
        encoding="utf-8",
    )
    rotating.setLevel(config.level)
    rotating.setFormatter(formatter)
    app_logger.addHandler(rotating)

    _align_uvicorn_loggers(config.level, formatter)

    app_logger.propagate = False
    app_logger.info("Logging ready: level=%s json=%s file=%s", config.level, config.json_output, log_file)


def _align_uvicorn_loggers(level: str, formatter: logging.Formatter) -> None:
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger below the application namespace.

    Example:
        >>> logger = get_logger("services.recognition")
        # logs as local_ai_toolkit.services.recognition
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
