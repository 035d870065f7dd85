"""
Reliability module: Retry classification and exponential backoff.
"""

from authsession.reliability.retry import (
    RetryContext,
    RetryPolicy,
    is_transient,
    retry_with_backoff,
)

__all__ = [
    "RetryContext",
    "RetryPolicy",
    "is_transient",
    "retry_with_backoff",
]
