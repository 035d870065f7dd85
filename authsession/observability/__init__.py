"""
Observability module: Structured logging.
"""

from authsession.observability.logging import (
    JsonFormatter,
    current_log_context,
    log_context,
    setup_logging,
)

__all__ = [
    "JsonFormatter",
    "current_log_context",
    "log_context",
    "setup_logging",
]
