"""
Structured Logging: JSON-Formatted with Operation Context

Provides:
- JSON-formatted log output
- Context propagation (operation name, saga id) via contextvars
- Redaction of secret-bearing fields

Modules log through `logging.getLogger(__name__)`; this module only
formats and scopes.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, TextIO

# Context variable for operation-scoped fields
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

_REDACTED = "***"
_SECRET_KEYS = frozenset({"secret", "password", "token", "access_token", "refresh_token"})

# Attributes every LogRecord carries; anything else arrived via `extra=`.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _redact(fields: dict[str, Any]) -> dict[str, Any]:
    return {
        k: (_REDACTED if k.lower() in _SECRET_KEYS else v)
        for k, v in fields.items()
    }


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter with context fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        extra = dict(_log_context.get())

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                extra[key] = value

        data: dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        data.update(_redact(extra))

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Add fields to every record logged within the block.

    Usage:
        with log_context(operation="login"):
            logger.info("Authenticating")
    """
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)


def current_log_context() -> dict[str, Any]:
    return dict(_log_context.get())


def setup_logging(
    level: str = "INFO",
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure root logger.

    Args:
        level: Minimum log level name
        json_output: Use JSON formatting
        stream: Output stream (default: stderr)
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)

    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        ))

    root.addHandler(handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
