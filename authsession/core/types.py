"""
Core Type Definitions for the Identity Session Manager

Implements Result/Either monads for zero-exception control flow across
module seams, plus the immutable domain records the session layer caches.

Design Principles:
- Never use null for absence of an outcome (use Result)
- Domain records are frozen; the session layer replaces, never mutates
- Secrets never appear in repr() or serialized output
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    Mapping,
    Optional,
    TypeVar,
    Union,
)

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def flat_map(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind for chaining fallible operations."""
        return fn(self.value)

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries the classified error for exhaustive handling.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant - propagates error unchanged."""
        return self

    def flat_map(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        """Propagate error through monadic chain."""
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP WITH NANOSECOND PRECISION
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    Wall-clock timestamp in nanoseconds since the Unix epoch.

    Session expiry is reported by identity providers in epoch seconds;
    from_seconds() is the usual entry point for those values.
    """

    nanos: int

    NANOS_PER_SECOND = 1_000_000_000
    NANOS_PER_MILLI = 1_000_000

    @classmethod
    def now(cls) -> Timestamp:
        return cls(nanos=time.time_ns())

    @classmethod
    def from_seconds(cls, seconds: float) -> Timestamp:
        """Convert floating-point epoch seconds to Timestamp."""
        return cls(nanos=int(seconds * cls.NANOS_PER_SECOND))

    @classmethod
    def from_millis(cls, millis: int) -> Timestamp:
        return cls(nanos=millis * cls.NANOS_PER_MILLI)

    @classmethod
    def in_seconds(cls, seconds: float) -> Timestamp:
        """Timestamp `seconds` from now (negative values lie in the past)."""
        return cls(nanos=time.time_ns() + int(seconds * cls.NANOS_PER_SECOND))

    @property
    def seconds(self) -> float:
        return self.nanos / self.NANOS_PER_SECOND

    @property
    def millis(self) -> int:
        return self.nanos // self.NANOS_PER_MILLI

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.seconds, tz=timezone.utc)

    def __sub__(self, other: Timestamp) -> int:
        """Subtract timestamps, returning difference in nanos."""
        return self.nanos - other.nanos

    def __add__(self, nanos: int) -> Timestamp:
        result = self.nanos + nanos
        if result < 0:
            raise OverflowError("Timestamp underflow")
        return Timestamp(nanos=result)

    def __repr__(self) -> str:
        return f"Timestamp({self.nanos}ns)"


# =============================================================================
# DOMAIN RECORDS
# =============================================================================
@dataclass(frozen=True, slots=True)
class Credential:
    """
    Identifier/secret pair for a single credential exchange.

    Transient: never persisted, never logged. The secret is excluded
    from repr() so accidental logging of the object leaks nothing.
    """
    identifier: str
    secret: str = field(repr=False)

    def __str__(self) -> str:
        return f"Credential({self.identifier})"


@dataclass(frozen=True, slots=True)
class Identity:
    """
    Read-only cached copy of the remote identity record.

    Owned by the identity provider; the client only replaces its copy
    (e.g. with a refreshed expiry), it never edits the remote record.
    """
    id: str
    identifier: str
    expires_at: Timestamp

    def is_expired(self, now: Optional[Timestamp] = None) -> bool:
        now = now or Timestamp.now()
        return now >= self.expires_at

    def remaining_seconds(self, now: Optional[Timestamp] = None) -> float:
        """Seconds until expiry; negative once expired."""
        now = now or Timestamp.now()
        return (self.expires_at - now) / Timestamp.NANOS_PER_SECOND

    def with_expiry(self, expires_at: Timestamp) -> Identity:
        return replace(self, expires_at=expires_at)


@dataclass(frozen=True, slots=True)
class Profile:
    """
    Application profile keyed by the identity id.

    Invariant: Profile.id == Identity.id for the owning identity.
    """
    id: str
    full_name: str
    phone_number: str
    email: str
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Profile:
        """Build from a `users` table row (or any mapping with its columns)."""
        created_at = row.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        if created_at is None:
            created_at = datetime.now(timezone.utc)
        return cls(
            id=str(row["id"]),
            full_name=row.get("full_name") or "",
            phone_number=row.get("phone_number") or "",
            email=row.get("email") or "",
            created_at=created_at,
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone_number": self.phone_number,
            "email": self.email,
            "created_at": self.created_at,
        }

    def apply(self, patch: ProfilePatch) -> Profile:
        """Return a copy with the patch's present fields applied."""
        return replace(self, **patch.changes())


@dataclass(frozen=True, slots=True)
class ProfilePatch:
    """Partial profile update; absent fields are left untouched."""
    full_name: Optional[str] = None
    phone_number: Optional[str] = None

    def changes(self) -> dict[str, str]:
        return {
            k: v for k, v in (
                ("full_name", self.full_name),
                ("phone_number", self.phone_number),
            )
            if v is not None
        }

    @property
    def is_empty(self) -> bool:
        return not self.changes()


@dataclass(frozen=True, slots=True)
class RemoteSession:
    """Session as reported by the identity provider on restore."""
    identity: Identity
