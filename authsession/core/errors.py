"""
Closed Error Taxonomy for the Identity Session Manager

Design Principles:
- Raw backend failures are normalized at the gateway/store boundary;
  the session core never pattern-matches on backend error strings
- Every terminal error maps to exactly one user-displayable ErrorCategory
- Only TransientBackendError is retryable
- Carry full error context for debugging, never secrets

Usage:
    result = await manager.login(email, secret)
    match result:
        case Ok(snapshot):
            render(snapshot)
        case Err(CredentialError() as e):
            show(messages[e.category])
        case Err(ServiceUnavailableError() as e):
            show(messages[e.category])
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Optional
from uuid import uuid4

from authsession.core.types import Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Input validation errors
    - 2xxx: Credential errors
    - 3xxx: Registration errors
    - 4xxx: Backend availability errors
    - 9xxx: Internal/unknown errors
    """

    # Validation errors (1xxx)
    VALIDATION_MISSING_FIELD = 1001
    VALIDATION_MALFORMED_IDENTIFIER = 1002
    VALIDATION_WEAK_SECRET = 1003
    VALIDATION_EMPTY_PATCH = 1004
    VALIDATION_REJECTED_BY_STORE = 1005
    VALIDATION_INVALID_STATE = 1006

    # Credential errors (2xxx)
    CREDENTIAL_INVALID = 2001
    CREDENTIAL_UNCONFIRMED = 2002
    CREDENTIAL_SESSION_EXPIRED = 2003

    # Registration errors (3xxx)
    REGISTRATION_DUPLICATE_ACCOUNT = 3001
    REGISTRATION_COMPENSATION_FAILED = 3002

    # Backend errors (4xxx)
    BACKEND_TRANSIENT = 4001
    BACKEND_UNAVAILABLE = 4002

    # Internal errors (9xxx)
    INTERNAL_UNEXPECTED = 9001


class ErrorCategory(Enum):
    """
    User-displayable classification.

    The UI layer owns message text; it maps each category to exactly
    one localized message.
    """
    CREDENTIAL_INVALID = auto()
    DUPLICATE_ACCOUNT = auto()
    VALIDATION_FAILED = auto()
    SERVICE_UNAVAILABLE = auto()
    UNEXPECTED = auto()


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class AuthSessionError(Exception):
    """
    Base class for all session-manager errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Cause chain for root cause analysis
    - Transient flag consulted by the retry policy
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def transient(self) -> bool:
        return False

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory.UNEXPECTED

    def with_context(self, **kwargs: Any) -> AuthSessionError:
        """Return a copy of this error with extra context merged in."""
        return type(self)(
            code=self.code,
            message=self.message,
            error_id=self.error_id,
            timestamp=self.timestamp,
            cause=self.cause,
            context={**self.context, **kwargs},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for structured logging."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "category": self.category.name,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================
@dataclass
class ValidationError(AuthSessionError):
    """Malformed input, caught before any network call where possible."""

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory.VALIDATION_FAILED

    @classmethod
    def missing_field(cls, name: str) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_MISSING_FIELD,
            message=f"Field '{name}' is required",
            context={"field": name},
        )

    @classmethod
    def malformed_identifier(cls, identifier: str) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_MALFORMED_IDENTIFIER,
            message="Identifier is not a well-formed email address",
            context={"identifier": identifier},
        )

    @classmethod
    def weak_secret(cls, min_length: int) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_WEAK_SECRET,
            message=f"Secret must be at least {min_length} characters",
            context={"min_length": min_length},
        )

    @classmethod
    def empty_patch(cls) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_EMPTY_PATCH,
            message="Profile update contains no changes",
        )

    @classmethod
    def rejected_by_store(
        cls,
        constraint: str,
        cause: Optional[BaseException] = None,
    ) -> ValidationError:
        """Profile store refused the row (check constraint and similar)."""
        return cls(
            code=ErrorCode.VALIDATION_REJECTED_BY_STORE,
            message=f"Profile data rejected by store constraint '{constraint}'",
            cause=cause,
            context={"constraint": constraint},
        )

    @classmethod
    def invalid_state(cls, operation: str, state: str) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_INVALID_STATE,
            message=f"Operation '{operation}' not permitted in state {state}",
            context={"operation": operation, "state": state},
        )


# =============================================================================
# CREDENTIAL ERRORS
# =============================================================================
@dataclass
class CredentialError(AuthSessionError):
    """Authentication rejected by the identity provider. Terminal."""

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory.CREDENTIAL_INVALID

    @classmethod
    def invalid(cls, cause: Optional[BaseException] = None) -> CredentialError:
        return cls(
            code=ErrorCode.CREDENTIAL_INVALID,
            message="Invalid identifier or secret",
            cause=cause,
        )

    @classmethod
    def unconfirmed(cls, identifier: str) -> CredentialError:
        """Identifier exists but has not been confirmed yet."""
        return cls(
            code=ErrorCode.CREDENTIAL_UNCONFIRMED,
            message="Identifier has not been confirmed",
            context={"identifier": identifier},
        )

    @classmethod
    def session_expired(
        cls,
        cause: Optional[BaseException] = None,
    ) -> CredentialError:
        """Remote side rejected the session token as expired."""
        return cls(
            code=ErrorCode.CREDENTIAL_SESSION_EXPIRED,
            message="Remote session has expired",
            cause=cause,
        )

    @property
    def is_session_expired(self) -> bool:
        return self.code is ErrorCode.CREDENTIAL_SESSION_EXPIRED


# =============================================================================
# REGISTRATION ERRORS
# =============================================================================
@dataclass
class DuplicateAccountError(AuthSessionError):
    """Registration against an already-registered identifier. Terminal."""

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory.DUPLICATE_ACCOUNT

    @classmethod
    def for_identifier(cls, identifier: str) -> DuplicateAccountError:
        return cls(
            code=ErrorCode.REGISTRATION_DUPLICATE_ACCOUNT,
            message="An account with this identifier already exists",
            context={"identifier": identifier},
        )


@dataclass
class ConsistencyWarning(AuthSessionError):
    """
    Compensating rollback failed during registration.

    Logged, never surfaced: the caller sees the original profile-insert
    failure. May leave an identity without a profile.
    """

    @classmethod
    def orphaned_identity(
        cls,
        identity_id: str,
        saga_id: str,
        cause: Optional[BaseException] = None,
    ) -> ConsistencyWarning:
        return cls(
            code=ErrorCode.REGISTRATION_COMPENSATION_FAILED,
            message=f"Failed to destroy identity {identity_id} after profile insert failure",
            cause=cause,
            context={"identity_id": identity_id, "saga_id": saga_id},
        )


# =============================================================================
# BACKEND AVAILABILITY ERRORS
# =============================================================================
@dataclass
class TransientBackendError(AuthSessionError):
    """Temporary backend unavailability. The only retryable error."""

    @property
    def transient(self) -> bool:
        return True

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory.SERVICE_UNAVAILABLE

    @classmethod
    def from_status(
        cls,
        status: int,
        operation: str,
        cause: Optional[BaseException] = None,
    ) -> TransientBackendError:
        return cls(
            code=ErrorCode.BACKEND_TRANSIENT,
            message=f"Backend returned status {status} during '{operation}'",
            cause=cause,
            context={"status": status, "operation": operation},
        )

    @classmethod
    def unreachable(
        cls,
        operation: str,
        cause: Optional[BaseException] = None,
    ) -> TransientBackendError:
        return cls(
            code=ErrorCode.BACKEND_TRANSIENT,
            message=f"Backend unreachable during '{operation}'",
            cause=cause,
            context={"operation": operation},
        )


@dataclass
class ServiceUnavailableError(AuthSessionError):
    """Retry budget exhausted against a transient backend fault."""

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory.SERVICE_UNAVAILABLE

    @classmethod
    def retries_exhausted(
        cls,
        operation: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
    ) -> ServiceUnavailableError:
        return cls(
            code=ErrorCode.BACKEND_UNAVAILABLE,
            message=f"'{operation}' temporarily unavailable after {attempts} attempts",
            cause=last_error,
            context={"operation": operation, "attempts": attempts},
        )

    @property
    def attempts(self) -> int:
        return int(self.context.get("attempts", 0))


# =============================================================================
# INTERNAL ERRORS
# =============================================================================
@dataclass
class UnexpectedError(AuthSessionError):
    """Anything uncategorized. Always terminal, always logged in full."""

    @classmethod
    def wrap(cls, operation: str, cause: BaseException) -> UnexpectedError:
        return cls(
            code=ErrorCode.INTERNAL_UNEXPECTED,
            message=f"Unexpected failure during '{operation}': {cause}",
            cause=cause,
            context={"operation": operation, "exception_type": type(cause).__name__},
        )


# =============================================================================
# BOUNDARY NORMALIZATION
# =============================================================================
# Lower-cased fragments of backend messages, checked in order.
_CREDENTIAL_SIGNATURES = ("invalid login credentials", "invalid credentials", "invalid grant")
_UNCONFIRMED_SIGNATURES = ("email not confirmed", "not confirmed")
_DUPLICATE_SIGNATURES = ("already registered", "already exists", "user exists")
_EXPIRED_SIGNATURES = ("jwt expired", "token expired", "session expired")
_TRANSIENT_SIGNATURES = (
    "database", "connection", "timeout", "timed out",
    "temporarily unavailable", "service unavailable", "network",
)


def normalize_backend_failure(
    failure: BaseException | int | None,
    message: str = "",
    *,
    operation: str,
    identifier: str = "",
) -> AuthSessionError:
    """
    Map a raw backend failure into the closed taxonomy.

    Args:
        failure: Raw exception from the SDK, an HTTP-like status code,
            or None when only a message is available
        message: Backend-supplied error message, if any
        operation: Gateway operation name, for context
        identifier: Identifier involved, for context on credential errors

    Returns:
        The classified AuthSessionError (already-classified errors pass
        through unchanged)
    """
    if isinstance(failure, AuthSessionError):
        return failure

    cause = failure if isinstance(failure, BaseException) else None
    status = failure if isinstance(failure, int) else _status_of(failure)
    text = (message or (str(failure) if cause is not None else "")).lower()

    if status is not None and status >= 500:
        return TransientBackendError.from_status(status, operation, cause=cause)
    if isinstance(cause, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return TransientBackendError.unreachable(operation, cause=cause)

    if any(s in text for s in _EXPIRED_SIGNATURES):
        return CredentialError.session_expired(cause=cause)
    if any(s in text for s in _UNCONFIRMED_SIGNATURES):
        return CredentialError.unconfirmed(identifier)
    if any(s in text for s in _CREDENTIAL_SIGNATURES) or status in (400, 401):
        return CredentialError.invalid(cause=cause)
    if any(s in text for s in _DUPLICATE_SIGNATURES) or status == 409:
        return DuplicateAccountError.for_identifier(identifier)
    if any(s in text for s in _TRANSIENT_SIGNATURES):
        return TransientBackendError.unreachable(operation, cause=cause)
    if isinstance(cause, OSError):
        return TransientBackendError.unreachable(operation, cause=cause)

    if cause is None:
        cause = RuntimeError(message or f"status {status}")
    return UnexpectedError.wrap(operation, cause)


def _status_of(failure: Any) -> Optional[int]:
    """Status code carried by SDK exceptions (status / status_code)."""
    for attr in ("status", "status_code"):
        value = getattr(failure, attr, None)
        if isinstance(value, int):
            return value
    return None
