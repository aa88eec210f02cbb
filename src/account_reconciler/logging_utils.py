from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

from account_reconciler.logging_context import CONTEXT_FIELDS, get_logging_context
from account_reconciler.security.redaction import redact_data

# Loggers of the HTTP stack, each with the env var that overrides its level.
_HTTP_LOGGERS = {"httpx": "HTTPX_LOG_LEVEL", "httpcore": "HTTPCORE_LOG_LEVEL"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Fields passed as ``extra={"extra": {...}}`` are merged at the top level,
    then any missing context field (run, cycle, account, operation) is filled
    from the active logging context. The whole payload is redacted last.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload.update(fields)

        context = get_logging_context()
        for name in CONTEXT_FIELDS:
            payload.setdefault(name, context.get(name))

        payload.update(self._error_fields(record))
        return json.dumps(redact_data(payload), default=str)

    def _error_fields(self, record: logging.LogRecord) -> dict[str, str]:
        if not record.exc_info:
            return {"traceback": record.exc_text} if record.exc_text else {}
        exc_type, exc, _ = record.exc_info
        return {
            "error_type": exc_type.__name__ if exc_type is not None else "Exception",
            "error_message": "" if exc is None else str(exc),
            "traceback": self.formatException(record.exc_info),
        }


def _level(raw: str | int | None, fallback: int) -> int:
    if isinstance(raw, int):
        return raw
    name = (raw or "").strip().upper()
    if not name:
        return fallback
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else fallback


def setup_logging(level: str | int | None = None) -> None:
    """Route every logger through one JSON stream handler on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)

    root_level = _level(level if level is not None else os.getenv("LOG_LEVEL"), logging.INFO)
    root.setLevel(root_level)

    # httpx logs every request at INFO; keep it quiet unless debugging.
    http_default = logging.DEBUG if root_level <= logging.DEBUG else logging.WARNING
    for logger_name, env_var in _HTTP_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(_level(os.getenv(env_var), http_default))
