"""Log setup for the CLI: JSON lines on disk, short text on stderr."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "voicequeue.log"
CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RECORD_FIELDS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line.

    `extra=` values land under `context`. The asyncio task name is kept so a
    pump or dispatcher line can be traced back to its session.
    """

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        payload: dict[str, object] = {
            "timestamp": stamp.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        task_name = getattr(record, "taskName", None)
        if task_name:
            payload["task"] = task_name
        context = {
            key: _to_json(value)
            for key, value in vars(record).items()
            if key not in _RECORD_FIELDS and not key.startswith("_")
        }
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def _to_json(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, bytes):
        # Subprocess stderr tails arrive as raw bytes.
        return value.decode("utf-8", errors="replace")
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _to_json(item) for key, item in value.items()}
    return repr(value)


def _level_number(level: str | int) -> int:
    if isinstance(level, int):
        return level
    number = logging.getLevelName(level.upper())
    return number if isinstance(number, int) else logging.INFO


def setup_logging(
    log_dir: Path,
    level: str | int = "INFO",
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    log_file: Path | None = None,
) -> Path:
    """Replace the root handlers and return the path being written."""
    numeric = _level_number(level)
    log_path = log_file if log_file is not None else log_dir / LOG_FILE_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(JsonLogFormatter())
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    root = logging.getLogger()
    root.setLevel(numeric)
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)
    # discord.py logs every gateway heartbeat at INFO.
    logging.getLogger("discord").setLevel(max(numeric, logging.WARNING))
    return log_path
