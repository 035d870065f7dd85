"""
Retry Policy: Exponential Backoff with Jitter

Implements the retry strategy for calls to the identity provider and
profile store:
- Only transient backend faults are retried; everything else is terminal
- Exponential backoff: base × 2^attempt, scaled by jitter in [0.5, 1.0]
- Capped at max delay (10s) to bound a single wait
- Caller-supplied attempt budget: 5 for authentication, 3 for registration

Attempts run strictly sequentially: attempt N+1 starts only after attempt
N's round trip and backoff delay have both completed.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from authsession.core import constants as C
from authsession.core.config import RetryConfig
from authsession.core.errors import (
    AuthSessionError,
    ServiceUnavailableError,
    normalize_backend_failure,
)
from authsession.core.types import Result, Ok, Err

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(error: BaseException) -> bool:
    """
    Check whether an error signals temporary backend unavailability.

    Classified errors carry the answer themselves; raw exceptions are
    judged by type and by any HTTP-like status they carry.
    """
    if isinstance(error, AuthSessionError):
        return error.transient
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError, OSError)):
        return True
    for attr in ("status", "status_code"):
        status = getattr(error, attr, None)
        if isinstance(status, int) and status >= 500:
            return True
    return False


@dataclass
class RetryPolicy:
    """Retry configuration for one kind of operation."""

    max_attempts: int
    base_delay_ms: int = C.RETRY_BASE_DELAY_MS
    max_delay_ms: int = C.RETRY_MAX_DELAY_MS
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def for_authentication(cls, config: Optional[RetryConfig] = None) -> RetryPolicy:
        """Policy for credential exchange (5 attempts by default)."""
        config = config or RetryConfig()
        return cls(
            max_attempts=config.login_max_attempts,
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
        )

    @classmethod
    def for_registration(cls, config: Optional[RetryConfig] = None) -> RetryPolicy:
        """Policy for each registration write (3 attempts by default)."""
        config = config or RetryConfig()
        return cls(
            max_attempts=config.registration_max_attempts,
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
        )

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """
        Decide whether to run another attempt.

        Args:
            error: Error produced by the attempt that just failed
            attempt: Zero-based index of that attempt
        """
        return is_transient(error) and attempt + 1 < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """
        Backoff delay in seconds after the given zero-based attempt.

        min(max, base * 2^attempt * (0.5 + U(0, 0.5)))
        """
        jitter = C.JITTER_FLOOR + self.rng.uniform(0, C.JITTER_SPAN)
        delay_ms = min(self.max_delay_ms, self.base_delay_ms * (2 ** attempt) * jitter)
        return delay_ms / C.SECOND_MS


@dataclass
class RetryContext:
    """
    Per-invocation retry record.

    Scoped to a single operation call; never shared or persisted.
    """
    operation: str
    policy: RetryPolicy
    attempt: int = 0
    total_delay_s: float = 0.0
    last_error: Optional[AuthSessionError] = None

    @property
    def attempts_made(self) -> int:
        return self.attempt + 1


async def retry_with_backoff(
    func: Callable[[], Awaitable[Result[T, AuthSessionError]]],
    policy: RetryPolicy,
    *,
    operation: str,
) -> Result[T, AuthSessionError]:
    """
    Execute an async Result-returning call with retry and backoff.

    Args:
        func: Zero-argument coroutine factory performing one attempt
        policy: Retry configuration
        operation: Name used in logs and in the exhaustion error

    Returns:
        Ok with the call's value; Err with the terminal error after one
        attempt; or Err(ServiceUnavailableError) once the budget is spent
    """
    ctx = RetryContext(operation=operation, policy=policy)

    while True:
        try:
            result = await func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            result = Err(normalize_backend_failure(e, operation=operation))

        if result.is_ok():
            if ctx.attempt:
                logger.debug(f"{operation} succeeded on attempt {ctx.attempts_made}")
            return result

        error = result.error
        ctx.last_error = error

        if not is_transient(error):
            logger.debug(f"{operation} failed terminally on attempt {ctx.attempts_made}: {error}")
            return result

        if not policy.should_retry(error, ctx.attempt):
            logger.warning(
                f"{operation} exhausted {ctx.attempts_made} attempts",
                extra={"operation": operation, "attempts": ctx.attempts_made},
            )
            return Err(ServiceUnavailableError.retries_exhausted(
                operation=operation,
                attempts=ctx.attempts_made,
                last_error=error,
            ))

        delay = policy.delay_for(ctx.attempt)
        ctx.total_delay_s += delay
        logger.debug(
            f"{operation} attempt {ctx.attempts_made} failed: {error}; "
            f"retrying in {delay:.2f}s"
        )
        await asyncio.sleep(delay)
        ctx.attempt += 1
