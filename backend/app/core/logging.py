"""Logging setup with text/JSON formatters and dotted event names."""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import UTC, datetime

from app.core.config import settings

_ROOT_LOGGER_NAME = "app"
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    },
)


def _record_extras(record: logging.LogRecord) -> dict[str, object]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """Render one JSON object per record, including `extra=` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload.update(_record_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, sort_keys=True)


class TextFormatter(logging.Formatter):
    """Human-readable formatter that appends `extra=` fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = _record_extras(record)
        if not extras:
            return base
        rendered = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        return f"{base} {rendered}"


def configure_logging(
    *,
    level: str | None = None,
    log_format: str | None = None,
    use_utc: bool | None = None,
) -> None:
    """Install a single stream handler on the application logger."""
    resolved_level = (level or settings.log_level).strip().upper()
    resolved_format = (log_format or settings.log_format).strip().lower()
    resolved_utc = settings.log_use_utc if use_utc is None else use_utc

    formatter: logging.Formatter
    if resolved_format == "json":
        formatter = JsonFormatter()
    else:
        formatter = TextFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        if resolved_utc:
            formatter.converter = time.gmtime

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger(_ROOT_LOGGER_NAME)
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolved_level)
    root.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Return a module logger under the application logger namespace."""
    return logging.getLogger(name)
