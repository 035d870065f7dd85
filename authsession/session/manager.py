"""
Session Manager: Identity Session Facade and Lifecycle Owner

Turns credential exchanges with the identity provider into a locally
observable "logged in, with this profile" fact.

Provides:
- login / register / logout / refresh_profile / get_session
- restore (startup) and update_profile
- A read-only change subscription for the UI layer

Architecture:
- SessionStateMachine holds the lifecycle state
- RetryPolicy bounds authentication and registration writes
- RegistrationSaga keeps (identity, profile) consistent
- SessionMonitor watches expiry while AUTHENTICATED

Concurrency:
    Single event loop. Operations are expected one at a time from the UI
    layer; overlapping calls are not serialized here. The monitor's
    expiry callback is the only other writer and re-enters through
    expire() / refresh_session().
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from authsession.core.config import SessionConfig
from authsession.core.errors import (
    AuthSessionError,
    CredentialError,
    UnexpectedError,
    ValidationError,
    normalize_backend_failure,
)
from authsession.core.types import (
    Credential,
    Err,
    Identity,
    Ok,
    Profile,
    ProfilePatch,
    Result,
    Timestamp,
)
from authsession.gateways.protocols import IdentityGateway, ProfileStore
from authsession.observability.logging import log_context
from authsession.reliability.retry import RetryPolicy, retry_with_backoff
from authsession.session.monitor import SessionMonitor
from authsession.session.registration import RegistrationSaga
from authsession.session.state_machine import (
    LifecycleState,
    SessionStateMachine,
    StateTransitionEvent,
    Trigger,
)
from authsession.session.validation import InputValidator

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """
    Immutable view of the session handed to readers.
    """
    state: LifecycleState
    identity: Optional[Identity]
    profile: Optional[Profile]
    version: int

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None and self.state.is_logged_in

    @property
    def profile_missing(self) -> bool:
        """Logged in but no profile (degraded, still valid)."""
        return self.is_authenticated and self.profile is None


class ChangeKind(Enum):
    STATE = auto()
    PROFILE = auto()


@dataclass(frozen=True, slots=True)
class SessionChange:
    """Notification delivered to subscribers."""
    kind: ChangeKind
    snapshot: SessionSnapshot


SessionListener = Callable[[SessionChange], None]


class SessionManager:
    """
    Owns the single live session of this client.

    Usage:
        async with SessionManager(gateway, store, config) as manager:
            await manager.restore()
            result = await manager.login("a@b.com", "secret")
            if result.is_err():
                show(result.error.category)
    """

    __slots__ = (
        "_gateway", "_store", "_config", "_clock",
        "_fsm", "_identity", "_profile", "_listeners",
        "_auth_policy", "_write_policy", "_validator",
        "_saga", "_monitor", "_profile_task", "_closed",
    )

    def __init__(
        self,
        gateway: IdentityGateway,
        store: ProfileStore,
        config: Optional[SessionConfig] = None,
        *,
        clock: Callable[[], Timestamp] = Timestamp.now,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._config = config or SessionConfig()
        self._clock = clock

        self._fsm = SessionStateMachine()
        self._fsm.add_listener(self._on_transition)
        self._identity: Optional[Identity] = None
        self._profile: Optional[Profile] = None
        self._listeners: list[SessionListener] = []

        self._auth_policy = RetryPolicy.for_authentication(self._config.retry)
        self._write_policy = RetryPolicy.for_registration(self._config.retry)
        self._validator = InputValidator(self._config.validation)
        self._saga = RegistrationSaga(gateway, store, self._write_policy)
        self._monitor = SessionMonitor(self, self._config.monitor, clock)
        self._profile_task: Optional[asyncio.Task[Any]] = None
        self._closed = False

    # =========================================================================
    # READ SIDE
    # =========================================================================
    def get_session(self) -> SessionSnapshot:
        """Current session; synchronous, never touches the network."""
        return SessionSnapshot(
            state=self._fsm.state,
            identity=self._identity,
            profile=self._profile,
            version=self._fsm.version,
        )

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """
        Register for lifecycle/profile change notifications.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def monitor(self) -> SessionMonitor:
        return self._monitor

    # =========================================================================
    # LOGIN / REGISTER / RESTORE
    # =========================================================================
    async def login(
        self,
        identifier: str,
        secret: str,
    ) -> Result[SessionSnapshot, AuthSessionError]:
        """
        Authenticate with up to `login_max_attempts` tries.

        The profile is fetched in the background; its failure never fails
        the login.
        """
        with log_context(operation="login", identifier=identifier):
            checked = self._validator.check_login(identifier, secret)
            if checked.is_err():
                return checked

            begun = self._begin("login", Trigger.LOGIN_REQUESTED)
            if begun.is_err():
                return begun

            with self._abandon_on_cancel():
                result = await retry_with_backoff(
                    lambda: self._gateway.authenticate(identifier, secret),
                    self._auth_policy,
                    operation="authenticate",
                )
                if result.is_err():
                    self._fail_authentication()
                    return Err(self._report(result.error))

                logger.info("Login succeeded")
                return await self._establish("login", result.unwrap(), profile=None)

    async def register(
        self,
        identifier: str,
        secret: str,
        full_name: str,
        phone_number: str,
    ) -> Result[SessionSnapshot, AuthSessionError]:
        """
        Validate input, then create identity and profile through the saga.
        """
        with log_context(operation="register", identifier=identifier):
            checked = self._validator.check_registration(
                identifier, secret, full_name, phone_number
            )
            if checked.is_err():
                return checked

            begun = self._begin("register", Trigger.REGISTER_REQUESTED)
            if begun.is_err():
                return begun

            with self._abandon_on_cancel():
                result = await self._saga.run(
                    Credential(identifier=identifier, secret=secret),
                    full_name,
                    phone_number,
                )
                if result.is_err():
                    self._fail_authentication()
                    return Err(self._report(result.error))

                outcome = result.unwrap()
                logger.info(f"Registration succeeded (saga {outcome.saga_id})")
                return await self._establish("register", outcome.identity, profile=outcome.profile)

    async def restore(self) -> Result[SessionSnapshot, AuthSessionError]:
        """
        Adopt the session the identity provider still holds, if any.

        Called once at startup. A failed lookup signs out remotely and
        leaves the client logged out.
        """
        with log_context(operation="restore"):
            begun = self._begin("restore", Trigger.RESTORE_REQUESTED)
            if begun.is_err():
                return begun

            with self._abandon_on_cancel():
                result = await self._call("get_current_session", self._gateway.get_current_session)
                if result.is_err():
                    logger.warning(f"Session restore failed: {result.error}")
                    self._fail_authentication()
                    await self._remote_sign_out()
                    return Err(self._report(result.error))

                remote = result.unwrap()
                if remote is None or remote.identity.is_expired(self._clock()):
                    logger.debug("No live remote session to restore")
                    self._fail_authentication()
                    return Ok(self.get_session())

                logger.info("Session restored")
                return await self._establish("restore", remote.identity, profile=None)

    # =========================================================================
    # LOGOUT / EXPIRY / REFRESH
    # =========================================================================
    async def logout(self) -> None:
        """
        End the session. Idempotent and never fails.

        Local state is cleared first; a remote sign-out error is logged.
        """
        with log_context(operation="logout"):
            await self._end_session(Trigger.LOGOUT)

    async def expire(self) -> None:
        """Forced logout after the session's expiry passed."""
        with log_context(operation="expire"):
            await self._end_session(Trigger.SESSION_EXPIRED)

    async def refresh_session(self) -> Result[Timestamp, AuthSessionError]:
        """
        Extend the remote session and cache the new expiry.

        Fails closed: any refresh error logs the session out.
        """
        with log_context(operation="refresh_session"):
            identity = self._identity
            if identity is None or self._fsm.state is not LifecycleState.AUTHENTICATED:
                return Err(ValidationError.invalid_state("refresh_session", self._fsm.state.name))

            self._fsm.transition(Trigger.REFRESH_STARTED)
            try:
                result = await self._call("refresh_session", self._gateway.refresh_session)
            except asyncio.CancelledError:
                # Remote session untouched; keep the cached expiry.
                if self._fsm.state is LifecycleState.REFRESHING:
                    self._fsm.transition(Trigger.REFRESH_ABANDONED)
                raise

            if self._fsm.state is not LifecycleState.REFRESHING:
                # Logged out while the refresh was in flight.
                return result if result.is_err() else Err(
                    ValidationError.invalid_state("refresh_session", self._fsm.state.name)
                )

            if result.is_err():
                logger.warning(f"Session refresh failed, logging out: {result.error}")
                await self._end_session(Trigger.REFRESH_FAILED)
                return Err(self._report(result.error))

            expires_at = result.unwrap()
            self._identity = identity.with_expiry(expires_at)
            self._fsm.transition(Trigger.REFRESH_SUCCEEDED)
            logger.debug("Session refreshed")
            return Ok(expires_at)

    def current_expiry(self) -> Optional[Timestamp]:
        """Expiry watched by the monitor; None unless AUTHENTICATED."""
        if self._identity is None or self._fsm.state is not LifecycleState.AUTHENTICATED:
            return None
        return self._identity.expires_at

    # =========================================================================
    # PROFILE
    # =========================================================================
    async def refresh_profile(self) -> Result[Optional[Profile], AuthSessionError]:
        """Re-fetch the profile for the current identity; no-op when logged out."""
        identity = self._identity
        if identity is None or not self._fsm.state.is_logged_in:
            return Ok(None)
        with log_context(operation="refresh_profile"):
            return await self._load_profile(identity.id)

    async def update_profile(
        self,
        patch: ProfilePatch,
    ) -> Result[Optional[Profile], AuthSessionError]:
        """Write profile changes, then re-fetch the cached profile."""
        with log_context(operation="update_profile"):
            identity = self._identity
            if identity is None or not self._fsm.state.is_logged_in:
                return Err(ValidationError.invalid_state("update_profile", self._fsm.state.name))

            checked = self._validator.check_patch(patch)
            if checked.is_err():
                return checked

            result = await retry_with_backoff(
                lambda: self._store.update_profile(identity.id, patch),
                self._write_policy,
                operation="update_profile",
            )
            if result.is_err():
                return Err(self._report(result.error))

            return await self._load_profile(identity.id)

    async def wait_for_profile(self) -> Optional[Profile]:
        """Wait for an in-flight background profile fetch, if any."""
        task = self._profile_task
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait({task})
        return self._profile

    # =========================================================================
    # TEARDOWN
    # =========================================================================
    async def close(self) -> None:
        """
        Release background work. Does not sign out: the remote session
        survives for restore() on next start.
        """
        if self._closed:
            return
        self._closed = True
        await self._monitor.stop()
        await self._cancel_profile_fetch()
        self._listeners.clear()
        logger.debug("Session manager closed")

    async def __aenter__(self) -> SessionManager:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # =========================================================================
    # INTERNALS
    # =========================================================================
    def _begin(self, operation: str, trigger: Trigger) -> Result[None, AuthSessionError]:
        """Enter AUTHENTICATING, or refuse without any remote call."""
        if self._closed:
            return Err(ValidationError.invalid_state(operation, "CLOSED"))
        if not self._fsm.can_transition(trigger):
            return Err(ValidationError.invalid_state(operation, self._fsm.state.name))
        self._fsm.transition(trigger)
        return Ok(None)

    def _fail_authentication(self) -> None:
        if self._fsm.state is LifecycleState.AUTHENTICATING:
            self._fsm.transition(Trigger.AUTH_FAILED)

    @contextmanager
    def _abandon_on_cancel(self) -> Iterator[None]:
        """Leave AUTHENTICATING if the caller cancels mid-operation."""
        try:
            yield
        except asyncio.CancelledError:
            self._fail_authentication()
            raise

    async def _establish(
        self,
        operation: str,
        identity: Identity,
        profile: Optional[Profile],
    ) -> Result[SessionSnapshot, AuthSessionError]:
        """Cache the identity, enter AUTHENTICATED and (re)start the monitor."""
        if self._fsm.state is not LifecycleState.AUTHENTICATING:
            # A logout overtook the operation; it wins.
            return Err(ValidationError.invalid_state(operation, self._fsm.state.name))

        self._identity = identity
        self._profile = profile
        self._fsm.transition(Trigger.AUTH_SUCCEEDED)
        await self._monitor.start()

        if profile is None:
            await self._cancel_profile_fetch()
            self._profile_task = asyncio.create_task(
                self._load_profile(identity.id),
                name="profile-fetch",
            )
        return Ok(self.get_session())

    async def _end_session(self, trigger: Trigger) -> None:
        identity = self._identity
        self._identity = None
        self._profile = None

        await self._monitor.stop()
        await self._cancel_profile_fetch()

        if self._fsm.state is not LifecycleState.LOGGED_OUT:
            self._fsm.transition(trigger)
            logger.info(f"Logged out ({trigger.value})")

        if identity is not None:
            await self._remote_sign_out()

    async def _remote_sign_out(self) -> None:
        result = await self._call("sign_out", self._gateway.sign_out)
        if result.is_err():
            logger.warning(f"Remote sign-out failed, local session cleared anyway: {result.error}")

    async def _load_profile(self, identity_id: str) -> Result[Optional[Profile], AuthSessionError]:
        """
        Fetch and cache the profile for `identity_id`.

        Failures leave the session logged in with no profile, except a
        remote session-expiry rejection, which logs out.
        """
        result = await self._call("fetch_profile", lambda: self._store.fetch_profile(identity_id))

        current = self._identity
        if current is None or current.id != identity_id:
            # Session changed while fetching; drop the stale result.
            return result

        if result.is_err():
            error = result.error
            if isinstance(error, CredentialError) and error.is_session_expired:
                logger.info("Profile fetch rejected with expired session, logging out")
                await self._end_session(Trigger.SESSION_EXPIRED)
                return result
            logger.warning(f"Profile fetch failed, continuing without profile: {error}")
            self._set_profile(None)
            return Err(self._report(error))

        profile = result.unwrap()
        if profile is None:
            logger.info(f"No profile found for identity {identity_id}")
        self._set_profile(profile)
        return result

    async def _cancel_profile_fetch(self) -> None:
        task, self._profile_task = self._profile_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _call(
        self,
        operation: str,
        func: Callable[[], Awaitable[Result[T, AuthSessionError]]],
    ) -> Result[T, AuthSessionError]:
        """Single collaborator call with escaping exceptions normalized."""
        try:
            return await func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return Err(normalize_backend_failure(e, operation=operation))

    def _report(self, error: AuthSessionError) -> AuthSessionError:
        """Log uncategorized failures in full before handing them out."""
        if isinstance(error, UnexpectedError):
            logger.error(
                f"Unexpected failure: {error}",
                extra={"error": error.to_dict()},
                exc_info=error.cause,
            )
        return error

    def _set_profile(self, profile: Optional[Profile]) -> None:
        if profile == self._profile:
            return
        self._profile = profile
        self._notify(ChangeKind.PROFILE)

    def _on_transition(self, event: StateTransitionEvent) -> None:
        self._notify(ChangeKind.STATE)

    def _notify(self, kind: ChangeKind) -> None:
        change = SessionChange(kind=kind, snapshot=self.get_session())
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Session listener failed")
