"""
Collaborator Protocol Definitions: Identity Provider and Profile Store

Structural subtyping protocols (PEP 544) for the two remote services the
session manager coordinates:
- IdentityGateway: credential exchange and session lifecycle
- ProfileStore: application profile records keyed by identity id

Design Principles:
    - Zero-exception control flow via Result[T, AuthSessionError]
    - Implementations normalize raw SDK failures into the closed error
      taxonomy before returning (see core.errors.normalize_backend_failure)
    - Transport-level timeouts are the implementation's responsibility
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from authsession.core.errors import AuthSessionError
from authsession.core.types import (
    Identity,
    Profile,
    ProfilePatch,
    RemoteSession,
    Result,
    Timestamp,
)


@runtime_checkable
class IdentityGateway(Protocol):
    """
    Remote identity provider operations.

    Errors returned must be AuthSessionError subclasses: transient faults
    as TransientBackendError, rejections as CredentialError or
    DuplicateAccountError.
    """

    async def authenticate(
        self,
        identifier: str,
        secret: str,
    ) -> Result[Identity, AuthSessionError]:
        """Exchange credentials for an identity with a session expiry."""
        ...

    async def create_identity(
        self,
        identifier: str,
        secret: str,
        attrs: Mapping[str, Any],
    ) -> Result[Identity, AuthSessionError]:
        """Create a new identity; DuplicateAccountError if it exists."""
        ...

    async def destroy_identity(self, identity_id: str) -> Result[None, AuthSessionError]:
        """Delete an identity (registration compensation)."""
        ...

    async def get_current_session(self) -> Result[Optional[RemoteSession], AuthSessionError]:
        """Session the provider currently holds for this client, if any."""
        ...

    async def refresh_session(self) -> Result[Timestamp, AuthSessionError]:
        """Extend the current session; returns the new expiry."""
        ...

    async def sign_out(self) -> Result[None, AuthSessionError]:
        """End the current remote session."""
        ...


@runtime_checkable
class ProfileStore(Protocol):
    """
    Remote relational profile store.

    fetch_profile returns Ok(None) when no row exists; absence is not an
    error.
    """

    async def fetch_profile(self, profile_id: str) -> Result[Optional[Profile], AuthSessionError]:
        ...

    async def insert_profile(self, profile: Profile) -> Result[None, AuthSessionError]:
        ...

    async def update_profile(
        self,
        profile_id: str,
        patch: ProfilePatch,
    ) -> Result[None, AuthSessionError]:
        ...
