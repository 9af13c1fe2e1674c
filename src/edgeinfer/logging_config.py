"""Host-side logging configuration utilities."""

from __future__ import annotations

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_LEVEL = "INFO"


class MinimalJSONFormatter(logging.Formatter):
    """Serialize log records to a compact JSON string."""

    _RESERVED_KEYS = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z")
        )

        log_record: dict[str, Any] = {
            "ts": timestamp,
            "level": record.levelname,
            "module": record.name,
        }

        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        else:
            message = record.getMessage()
            if message:
                log_record["message"] = message

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in self._RESERVED_KEYS or key.startswith("_"):
                continue
            log_record[key] = value

        return json.dumps(log_record, ensure_ascii=False, default=str)


def _resolve_level(level: str | int | None) -> str | int:
    if level is None:
        level = os.getenv("EDGEINFER_LOG_LEVEL", DEFAULT_LEVEL)
    if isinstance(level, int):
        return level
    normalised = level.strip().upper()
    if not isinstance(logging.getLevelName(normalised), int):
        return DEFAULT_LEVEL
    return normalised


def configure_logging(level: str | int | None = None, *, log_file: str | Path | None = None) -> None:
    """Configure JSON logging for the ``edgeinfer`` logger tree.

    The library never calls this itself; host applications opt in. The level
    defaults to ``EDGEINFER_LOG_LEVEL`` and an optional file handler is added
    when ``log_file`` or ``EDGEINFER_LOG_FILE`` is set.
    """

    resolved_level = _resolve_level(level)
    file_target = log_file or os.getenv("EDGEINFER_LOG_FILE")

    handlers: dict[str, dict[str, Any]] = {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        },
    }
    if file_target:
        path = Path(file_target).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": str(path),
            "mode": "a",
            "encoding": "utf-8",
            "formatter": "json",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": MinimalJSONFormatter}},
            "handlers": handlers,
            "loggers": {
                "edgeinfer": {
                    "level": resolved_level,
                    "handlers": list(handlers),
                    "propagate": False,
                }
            },
        }
    )


__all__ = ["MinimalJSONFormatter", "configure_logging"]
