"""Logging configuration with text and JSON formatters."""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import UTC, datetime
from typing import Any

from app.core.config import settings

_STANDARD_RECORD_ATTRS = frozenset(
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
_configured = False


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects including `extra` fields."""

    def __init__(self, *, use_utc: bool = False) -> None:
        super().__init__()
        self.use_utc = use_utc

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=UTC if self.use_utc else None)
        payload: dict[str, Any] = {
            "ts": timestamp.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter that appends `extra` fields as key=value pairs."""

    def __init__(self, *, use_utc: bool = False) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)s %(name)s %(message)s")
        if use_utc:
            self.converter = time.gmtime

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
    """Install the root handler once using settings-driven defaults."""
    global _configured
    resolved_level = (level or settings.log_level).upper()
    resolved_format = (log_format or settings.log_format).strip().lower()
    resolved_utc = settings.log_use_utc if use_utc is None else use_utc

    handler = logging.StreamHandler(sys.stdout)
    if resolved_format == "json":
        handler.setFormatter(JsonFormatter(use_utc=resolved_utc))
    else:
        handler.setFormatter(TextFormatter(use_utc=resolved_utc))

    root = logging.getLogger()
    if _configured:
        for existing in list(root.handlers):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(resolved_level)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; configuration is applied by the app entrypoints."""
    return logging.getLogger(name)
