"""
Client-Side Identity Session Manager

Turns credential exchanges with a remote identity provider into a durable,
locally observable session fact:
- Session Manager: lifecycle state machine and public facade
- Retry Policy: transient/terminal classification with jittered backoff
- Registration Saga: identity + profile creation with compensating rollback
- Session Monitor: background expiry watch and proactive refresh

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
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
    ValidationError,
    CredentialError,
    DuplicateAccountError,
    TransientBackendError,
    ServiceUnavailableError,
    ConsistencyWarning,
    UnexpectedError,
)
from authsession.core.config import SessionConfig
from authsession.reliability import RetryPolicy
from authsession.gateways import (
    IdentityGateway,
    ProfileStore,
    InMemoryIdentityGateway,
    InMemoryProfileStore,
    PostgresProfileStore,
)
from authsession.session import (
    LifecycleState,
    SessionManager,
    SessionMonitor,
    SessionSnapshot,
    SessionChange,
    RegistrationSaga,
)

__all__ = [
    "__version__",
    # Result monad
    "Result",
    "Ok",
    "Err",
    # Domain types
    "Timestamp",
    "Credential",
    "Identity",
    "Profile",
    "ProfilePatch",
    "RemoteSession",
    # Errors
    "AuthSessionError",
    "ErrorCategory",
    "ValidationError",
    "CredentialError",
    "DuplicateAccountError",
    "TransientBackendError",
    "ServiceUnavailableError",
    "ConsistencyWarning",
    "UnexpectedError",
    # Config
    "SessionConfig",
    # Reliability
    "RetryPolicy",
    # Collaborators
    "IdentityGateway",
    "ProfileStore",
    "InMemoryIdentityGateway",
    "InMemoryProfileStore",
    "PostgresProfileStore",
    # Session
    "LifecycleState",
    "SessionManager",
    "SessionMonitor",
    "SessionSnapshot",
    "SessionChange",
    "RegistrationSaga",
]
