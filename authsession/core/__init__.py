"""
Core module: Type definitions, error taxonomy, and configuration.

This module provides the foundational abstractions for the session manager:
- Result/Either monads for zero-exception control flow
- Closed error taxonomy with user-displayable categories
- Configuration management with validation
"""

from authsession.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    Credential,
    Identity,
    Profile,
    ProfilePatch,
    RemoteSession,
)
from authsession.core.errors import (
    AuthSessionError,
    ErrorCategory,
    ErrorCode,
    ValidationError,
    CredentialError,
    DuplicateAccountError,
    TransientBackendError,
    ServiceUnavailableError,
    ConsistencyWarning,
    UnexpectedError,
    normalize_backend_failure,
)
from authsession.core.config import SessionConfig

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "Credential",
    "Identity",
    "Profile",
    "ProfilePatch",
    "RemoteSession",
    "AuthSessionError",
    "ErrorCategory",
    "ErrorCode",
    "ValidationError",
    "CredentialError",
    "DuplicateAccountError",
    "TransientBackendError",
    "ServiceUnavailableError",
    "ConsistencyWarning",
    "UnexpectedError",
    "normalize_backend_failure",
    "SessionConfig",
]
