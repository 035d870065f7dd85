"""
In-Memory Collaborators: Reference Identity Gateway and Profile Store

Process-local implementations of IdentityGateway and ProfileStore used by
the demo entry point and the test suite.

Features:
    - Realistic semantics (duplicate detection, session expiry, upsert)
    - Call recording for interaction assertions
    - Scripted outcomes: queue Results or exceptions per operation to
      simulate transient faults, rejections and SDK crashes
    - Optional simulated latency

Example:
    gateway = InMemoryIdentityGateway()
    gateway.script(
        "authenticate",
        Err(TransientBackendError.from_status(503, "authenticate")),
    )
    result = await gateway.authenticate("a@b.com", "secret")  # scripted Err
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Optional, Tuple, Union
from uuid import uuid4

from authsession.core.errors import (
    AuthSessionError,
    CredentialError,
    DuplicateAccountError,
)
from authsession.core.types import (
    Err,
    Identity,
    Ok,
    Profile,
    ProfilePatch,
    RemoteSession,
    Result,
    Timestamp,
)

DEFAULT_SESSION_TTL_S: float = 3600.0

Scripted = Union[Ok, Err, BaseException]


class _ScriptedCollaborator:
    """Call recording and per-operation scripted outcomes."""

    def __init__(self, simulate_latency_s: float = 0.0) -> None:
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self._scripts: Dict[str, Deque[Scripted]] = defaultdict(deque)
        self._simulate_latency_s = simulate_latency_s

    def script(self, operation: str, *outcomes: Scripted) -> None:
        """
        Queue outcomes for the next calls of `operation`.

        Each queued Result is returned as-is; each queued exception is
        raised. Once the queue is drained the real behavior resumes.
        """
        self._scripts[operation].extend(outcomes)

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def calls_of(self, operation: str) -> List[Tuple[Any, ...]]:
        return [args for name, args in self.calls if name == operation]

    async def _enter(self, operation: str, *args: Any) -> Optional[Result]:
        """Record the call and return a scripted outcome, if one is queued."""
        self.calls.append((operation, args))
        if self._simulate_latency_s:
            await asyncio.sleep(self._simulate_latency_s)
        queue = self._scripts.get(operation)
        if not queue:
            return None
        outcome = queue.popleft()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@dataclass
class _Account:
    identity_id: str
    identifier: str
    secret: str = field(repr=False)
    attrs: Dict[str, Any] = field(default_factory=dict)
    confirmed: bool = True


class InMemoryIdentityGateway(_ScriptedCollaborator):
    """
    Identity provider held in process memory.

    Sessions expire `session_ttl_s` after authentication or refresh.
    """

    def __init__(
        self,
        session_ttl_s: float = DEFAULT_SESSION_TTL_S,
        require_confirmation: bool = False,
        simulate_latency_s: float = 0.0,
    ) -> None:
        super().__init__(simulate_latency_s)
        self._session_ttl_s = session_ttl_s
        self._require_confirmation = require_confirmation
        self._accounts: Dict[str, _Account] = {}
        self._current: Optional[Identity] = None

    # ------------------------------------------------------------------
    # Test/demo helpers
    # ------------------------------------------------------------------
    def add_account(
        self,
        identifier: str,
        secret: str,
        *,
        identity_id: Optional[str] = None,
        confirmed: bool = True,
    ) -> str:
        """Seed an existing account; returns its identity id."""
        account = _Account(
            identity_id=identity_id or str(uuid4()),
            identifier=identifier,
            secret=secret,
            confirmed=confirmed,
        )
        self._accounts[identifier] = account
        return account.identity_id

    def set_current_session(self, identity: Optional[Identity]) -> None:
        self._current = identity

    def has_identity(self, identity_id: str) -> bool:
        return any(a.identity_id == identity_id for a in self._accounts.values())

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    def _issue(self, account: _Account) -> Identity:
        identity = Identity(
            id=account.identity_id,
            identifier=account.identifier,
            expires_at=Timestamp.in_seconds(self._session_ttl_s),
        )
        self._current = identity
        return identity

    # ------------------------------------------------------------------
    # IdentityGateway
    # ------------------------------------------------------------------
    async def authenticate(
        self,
        identifier: str,
        secret: str,
    ) -> Result[Identity, AuthSessionError]:
        scripted = await self._enter("authenticate", identifier)
        if scripted is not None:
            return scripted

        account = self._accounts.get(identifier)
        if account is None or account.secret != secret:
            return Err(CredentialError.invalid())
        if self._require_confirmation and not account.confirmed:
            return Err(CredentialError.unconfirmed(identifier))
        return Ok(self._issue(account))

    async def create_identity(
        self,
        identifier: str,
        secret: str,
        attrs: Mapping[str, Any],
    ) -> Result[Identity, AuthSessionError]:
        scripted = await self._enter("create_identity", identifier, dict(attrs))
        if scripted is not None:
            return scripted

        if identifier in self._accounts:
            return Err(DuplicateAccountError.for_identifier(identifier))
        account = _Account(
            identity_id=str(uuid4()),
            identifier=identifier,
            secret=secret,
            attrs=dict(attrs),
            confirmed=not self._require_confirmation,
        )
        self._accounts[identifier] = account
        return Ok(self._issue(account))

    async def destroy_identity(self, identity_id: str) -> Result[None, AuthSessionError]:
        scripted = await self._enter("destroy_identity", identity_id)
        if scripted is not None:
            return scripted

        for identifier, account in list(self._accounts.items()):
            if account.identity_id == identity_id:
                del self._accounts[identifier]
        if self._current is not None and self._current.id == identity_id:
            self._current = None
        return Ok(None)

    async def get_current_session(self) -> Result[Optional[RemoteSession], AuthSessionError]:
        scripted = await self._enter("get_current_session")
        if scripted is not None:
            return scripted

        if self._current is None:
            return Ok(None)
        return Ok(RemoteSession(identity=self._current))

    async def refresh_session(self) -> Result[Timestamp, AuthSessionError]:
        scripted = await self._enter("refresh_session")
        if scripted is not None:
            return scripted

        if self._current is None:
            return Err(CredentialError.session_expired())
        expires_at = Timestamp.in_seconds(self._session_ttl_s)
        self._current = self._current.with_expiry(expires_at)
        return Ok(expires_at)

    async def sign_out(self) -> Result[None, AuthSessionError]:
        scripted = await self._enter("sign_out")
        if scripted is not None:
            return scripted

        self._current = None
        return Ok(None)


class InMemoryProfileStore(_ScriptedCollaborator):
    """
    Profile table held in process memory.

    insert_profile behaves as an upsert on id, matching the relational
    store adapter.
    """

    def __init__(self, simulate_latency_s: float = 0.0) -> None:
        super().__init__(simulate_latency_s)
        self._rows: Dict[str, Profile] = {}

    def get(self, profile_id: str) -> Optional[Profile]:
        return self._rows.get(profile_id)

    def put(self, profile: Profile) -> None:
        self._rows[profile.id] = profile

    def __len__(self) -> int:
        return len(self._rows)

    async def fetch_profile(self, profile_id: str) -> Result[Optional[Profile], AuthSessionError]:
        scripted = await self._enter("fetch_profile", profile_id)
        if scripted is not None:
            return scripted
        return Ok(self._rows.get(profile_id))

    async def insert_profile(self, profile: Profile) -> Result[None, AuthSessionError]:
        scripted = await self._enter("insert_profile", profile)
        if scripted is not None:
            return scripted
        self._rows[profile.id] = profile
        return Ok(None)

    async def update_profile(
        self,
        profile_id: str,
        patch: ProfilePatch,
    ) -> Result[None, AuthSessionError]:
        scripted = await self._enter("update_profile", profile_id, patch)
        if scripted is not None:
            return scripted
        existing = self._rows.get(profile_id)
        if existing is not None:
            self._rows[profile_id] = existing.apply(patch)
        return Ok(None)
