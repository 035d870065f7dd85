"""
Tests for the session manager facade.

Drives login, registration, restore, profile handling and logout against
the in-memory identity gateway and profile store, with zero backoff.
"""

import asyncio

import pytest

from authsession.core.config import MonitorConfig, RetryConfig, SessionConfig
from authsession.core.errors import (
    CredentialError,
    DuplicateAccountError,
    ErrorCategory,
    ErrorCode,
    ServiceUnavailableError,
    TransientBackendError,
    UnexpectedError,
    ValidationError,
)
from authsession.core.types import (
    Err,
    Identity,
    Ok,
    Profile,
    ProfilePatch,
    Timestamp,
)
from authsession.gateways.memory import InMemoryIdentityGateway, InMemoryProfileStore
from authsession.session.manager import ChangeKind, SessionManager
from authsession.session.state_machine import LifecycleState

S = LifecycleState
FAST = SessionConfig(retry=RetryConfig(base_delay_ms=0, max_delay_ms=0))

EMAIL = "ada@example.com"
SECRET = "s3cret!"


def _transient():
    return Err(TransientBackendError.from_status(503, "authenticate"))


@pytest.fixture
def gateway():
    return InMemoryIdentityGateway()


@pytest.fixture
def store():
    return InMemoryProfileStore()


def _run(gateway, store, scenario, config=FAST):
    """Run `scenario(manager)` inside a managed session on a fresh loop."""
    async def main():
        async with SessionManager(gateway, store, config) as manager:
            return await scenario(manager)
    return asyncio.run(main())


class _GatedGateway(InMemoryIdentityGateway):
    """Gateway whose gated operations block until released."""

    def __init__(self, *gated, **kwargs):
        super().__init__(**kwargs)
        self.gated = set(gated)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def _enter(self, operation, *args):
        if operation in self.gated:
            self.entered.set()
            await self.release.wait()
        return await super()._enter(operation, *args)


def _seed(gateway, store, identity_id="u-1"):
    gateway.add_account(EMAIL, SECRET, identity_id=identity_id)
    store.put(Profile(id=identity_id, full_name="Ada", phone_number="+216", email=EMAIL))
    return identity_id


class TestLogin:
    """Tests for credential login."""

    def test_success_fetches_profile_in_background(self, gateway, store):
        _seed(gateway, store)

        async def scenario(manager):
            result = await manager.login(EMAIL, SECRET)
            profile = await manager.wait_for_profile()
            return result, profile, manager.get_session()

        result, profile, session = _run(gateway, store, scenario)

        assert result.is_ok()
        assert session.state is S.AUTHENTICATED
        assert session.identity.id == "u-1"
        assert profile.full_name == "Ada"
        assert session.profile == profile

    def test_invalid_credentials_single_attempt(self, gateway, store):
        _seed(gateway, store)

        async def scenario(manager):
            return await manager.login(EMAIL, "wrong-secret"), manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert isinstance(result.error, CredentialError)
        assert result.error.category is ErrorCategory.CREDENTIAL_INVALID
        assert gateway.call_count("authenticate") == 1
        assert session.state is S.LOGGED_OUT
        assert session.identity is None

    def test_persistent_outage_uses_whole_budget(self, gateway, store):
        gateway.script("authenticate", *[_transient()] * 10)

        async def scenario(manager):
            return await manager.login(EMAIL, SECRET), manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert isinstance(result.error, ServiceUnavailableError)
        assert result.error.category is ErrorCategory.SERVICE_UNAVAILABLE
        assert gateway.call_count("authenticate") == 5
        assert session.state is S.LOGGED_OUT

    def test_recovers_after_two_transient_faults(self, gateway, store):
        identity = Identity(id="u-9", identifier=EMAIL, expires_at=Timestamp.in_seconds(3600))
        gateway.script("authenticate", _transient(), _transient(), Ok(identity))

        async def scenario(manager):
            result = await manager.login(EMAIL, SECRET)
            await manager.wait_for_profile()
            return result, manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert result.is_ok()
        assert gateway.call_count("authenticate") == 3
        assert session.state is S.AUTHENTICATED
        assert session.identity == identity
        assert session.profile_missing

    def test_unconfirmed_account_is_credential_error(self, store):
        gateway = InMemoryIdentityGateway(require_confirmation=True)
        gateway.add_account(EMAIL, SECRET, confirmed=False)

        async def scenario(manager):
            return await manager.login(EMAIL, SECRET)

        result = _run(gateway, store, scenario)

        assert result.error.code is ErrorCode.CREDENTIAL_UNCONFIRMED
        assert result.error.category is ErrorCategory.CREDENTIAL_INVALID

    def test_sdk_crash_surfaces_unexpected(self, gateway, store):
        gateway.script("authenticate", RuntimeError("sdk crashed"))

        async def scenario(manager):
            return await manager.login(EMAIL, SECRET), manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert isinstance(result.error, UnexpectedError)
        assert gateway.call_count("authenticate") == 1
        assert session.state is S.LOGGED_OUT

    def test_missing_fields_rejected_locally(self, gateway, store):
        async def scenario(manager):
            return await manager.login("", SECRET)

        result = _run(gateway, store, scenario)

        assert isinstance(result.error, ValidationError)
        assert gateway.calls == []

    def test_login_while_authenticated_refused(self, gateway, store):
        _seed(gateway, store)

        async def scenario(manager):
            await manager.login(EMAIL, SECRET)
            second = await manager.login(EMAIL, SECRET)
            return second, manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert result.error.code is ErrorCode.VALIDATION_INVALID_STATE
        assert gateway.call_count("authenticate") == 1
        assert session.state is S.AUTHENTICATED


class TestRegister:
    """Tests for registration through the manager."""

    @pytest.mark.parametrize("args", [
        ("", SECRET, "Ada", "+216"),
        (EMAIL, SECRET, "", "+216"),
        (EMAIL, SECRET, "Ada", ""),
        ("not-an-email", SECRET, "Ada", "+216"),
        (EMAIL, "12345", "Ada", "+216"),
        (EMAIL + "\n", SECRET, "Ada", "+216"),
    ])
    def test_invalid_input_makes_no_remote_calls(self, gateway, store, args):
        async def scenario(manager):
            return await manager.register(*args), manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert result.error.category is ErrorCategory.VALIDATION_FAILED
        assert gateway.calls == []
        assert store.calls == []
        assert session.state is S.LOGGED_OUT

    def test_success_authenticates_with_profile(self, gateway, store):
        async def scenario(manager):
            return await manager.register(EMAIL, SECRET, "Ada", "+216")

        session = _run(gateway, store, scenario).unwrap()

        assert session.state is S.AUTHENTICATED
        assert session.profile.id == session.identity.id
        assert session.profile.full_name == "Ada"
        assert store.call_count("fetch_profile") == 0

    def test_duplicate_account(self, gateway, store):
        gateway.add_account(EMAIL, "other-secret")

        async def scenario(manager):
            return await manager.register(EMAIL, SECRET, "Ada", "+216"), manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert isinstance(result.error, DuplicateAccountError)
        assert result.error.category is ErrorCategory.DUPLICATE_ACCOUNT
        assert store.calls == []
        assert session.state is S.LOGGED_OUT

    def test_profile_rejection_rolls_back(self, gateway, store):
        rejection = ValidationError.rejected_by_store("users_phone_number_check")
        store.script("insert_profile", Err(rejection))

        async def scenario(manager):
            return await manager.register(EMAIL, SECRET, "Ada", "+216"), manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert result.error is rejection
        assert gateway.call_count("destroy_identity") == 1
        assert session.state is S.LOGGED_OUT
        assert session.identity is None


class TestProfile:
    """Tests for profile fetch, degraded sessions and updates."""

    def test_fetch_failure_leaves_session_degraded(self, gateway, store):
        _seed(gateway, store)
        store.script("fetch_profile", Err(TransientBackendError.unreachable("fetch_profile")))

        async def scenario(manager):
            await manager.login(EMAIL, SECRET)
            await manager.wait_for_profile()
            return manager.get_session()

        session = _run(gateway, store, scenario)

        assert session.state is S.AUTHENTICATED
        assert session.profile is None
        assert session.profile_missing

    def test_expired_token_on_fetch_logs_out(self, gateway, store):
        _seed(gateway, store)
        store.script("fetch_profile", Err(CredentialError.session_expired()))

        async def scenario(manager):
            await manager.login(EMAIL, SECRET)
            await manager.wait_for_profile()
            return manager.get_session()

        session = _run(gateway, store, scenario)

        assert session.state is S.LOGGED_OUT
        assert session.identity is None
        assert gateway.call_count("sign_out") == 1

    def test_refresh_profile_picks_up_late_row(self, gateway, store):
        gateway.add_account(EMAIL, SECRET, identity_id="u-1")

        async def scenario(manager):
            await manager.login(EMAIL, SECRET)
            await manager.wait_for_profile()
            store.put(Profile(id="u-1", full_name="Ada", phone_number="+216", email=EMAIL))
            return await manager.refresh_profile(), manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert result.unwrap().full_name == "Ada"
        assert session.profile.full_name == "Ada"

    def test_refresh_profile_when_logged_out_is_noop(self, gateway, store):
        async def scenario(manager):
            return await manager.refresh_profile()

        assert _run(gateway, store, scenario) == Ok(None)
        assert store.calls == []

    def test_update_profile_writes_then_refetches(self, gateway, store):
        async def scenario(manager):
            await manager.register(EMAIL, SECRET, "Ada", "+216")
            result = await manager.update_profile(ProfilePatch(full_name="Ada King"))
            return result, manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert result.unwrap().full_name == "Ada King"
        assert session.profile.full_name == "Ada King"
        assert session.profile.phone_number == "+216"
        assert store.get(session.identity.id).full_name == "Ada King"

    def test_update_profile_rejects_empty_patch(self, gateway, store):
        async def scenario(manager):
            await manager.register(EMAIL, SECRET, "Ada", "+216")
            return await manager.update_profile(ProfilePatch())

        result = _run(gateway, store, scenario)

        assert result.error.code is ErrorCode.VALIDATION_EMPTY_PATCH
        assert store.call_count("update_profile") == 0

    def test_update_profile_requires_session(self, gateway, store):
        async def scenario(manager):
            return await manager.update_profile(ProfilePatch(full_name="X"))

        result = _run(gateway, store, scenario)

        assert result.error.code is ErrorCode.VALIDATION_INVALID_STATE


class TestRestore:
    """Tests for adopting a surviving remote session at startup."""

    def test_live_session_restored(self, gateway, store):
        _seed(gateway, store)
        identity = Identity(id="u-1", identifier=EMAIL, expires_at=Timestamp.in_seconds(3600))
        gateway.set_current_session(identity)

        async def scenario(manager):
            await manager.restore()
            await manager.wait_for_profile()
            return manager.get_session()

        session = _run(gateway, store, scenario)

        assert session.state is S.AUTHENTICATED
        assert session.identity == identity
        assert session.profile.full_name == "Ada"

    def test_no_remote_session(self, gateway, store):
        async def scenario(manager):
            return await manager.restore()

        session = _run(gateway, store, scenario).unwrap()

        assert session.state is S.LOGGED_OUT
        assert gateway.call_count("sign_out") == 0

    def test_expired_remote_session_ignored(self, gateway, store):
        gateway.set_current_session(
            Identity(id="u-1", identifier=EMAIL, expires_at=Timestamp.in_seconds(-60))
        )

        async def scenario(manager):
            return await manager.restore()

        session = _run(gateway, store, scenario).unwrap()

        assert session.state is S.LOGGED_OUT
        assert session.identity is None

    def test_lookup_failure_signs_out(self, gateway, store):
        gateway.script("get_current_session", Err(TransientBackendError.unreachable("get_current_session")))

        async def scenario(manager):
            return await manager.restore(), manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert result.is_err()
        assert session.state is S.LOGGED_OUT
        assert gateway.call_count("sign_out") == 1


class TestLogout:
    """Tests for ending the session."""

    def test_logout_clears_local_state(self, gateway, store):
        _seed(gateway, store)

        async def scenario(manager):
            await manager.login(EMAIL, SECRET)
            await manager.logout()
            return manager.get_session(), manager.monitor.running

        session, monitor_running = _run(gateway, store, scenario)

        assert session.state is S.LOGGED_OUT
        assert session.identity is None
        assert session.profile is None
        assert not monitor_running
        assert gateway.call_count("sign_out") == 1

    def test_remote_sign_out_failure_is_swallowed(self, gateway, store):
        _seed(gateway, store)
        gateway.script("sign_out", Err(TransientBackendError.unreachable("sign_out")))

        async def scenario(manager):
            await manager.login(EMAIL, SECRET)
            await manager.logout()
            return manager.get_session()

        assert _run(gateway, store, scenario).state is S.LOGGED_OUT

    def test_logout_when_logged_out_is_noop(self, gateway, store):
        async def scenario(manager):
            await manager.logout()
            await manager.logout()
            return manager.get_session()

        session = _run(gateway, store, scenario)

        assert session.state is S.LOGGED_OUT
        assert session.version == 0
        assert gateway.call_count("sign_out") == 0

    def test_close_stops_monitor_and_refuses_login(self, gateway, store):
        _seed(gateway, store)

        async def scenario():
            manager = SessionManager(gateway, store, FAST)
            await manager.login(EMAIL, SECRET)
            await manager.close()
            after = await manager.login(EMAIL, SECRET)
            return manager.monitor.running, after

        running, after = asyncio.run(scenario())

        assert not running
        assert after.error.code is ErrorCode.VALIDATION_INVALID_STATE
        assert gateway.call_count("sign_out") == 0


    def test_logout_during_login_discards_late_result(self, store):
        gateway = _GatedGateway("authenticate")
        _seed(gateway, store)

        async def scenario(manager):
            login = asyncio.create_task(manager.login(EMAIL, SECRET))
            await gateway.entered.wait()
            in_flight = manager.get_session().state
            await manager.logout()
            gateway.release.set()
            return in_flight, await login, manager.get_session()

        in_flight, result, session = _run(gateway, store, scenario)

        assert in_flight is S.AUTHENTICATING
        assert result.error.code is ErrorCode.VALIDATION_INVALID_STATE
        assert session.state is S.LOGGED_OUT
        assert session.identity is None
        assert session.profile is None
        assert store.call_count("fetch_profile") == 0

    def test_logout_during_refresh_discards_late_result(self, store):
        gateway = _GatedGateway("refresh_session")
        _seed(gateway, store)

        async def scenario(manager):
            await manager.login(EMAIL, SECRET)
            await manager.wait_for_profile()
            refresh = asyncio.create_task(manager.refresh_session())
            await gateway.entered.wait()
            in_flight = manager.get_session().state
            await manager.logout()
            gateway.release.set()
            return in_flight, await refresh, manager.get_session()

        in_flight, result, session = _run(gateway, store, scenario)

        assert in_flight is S.REFRESHING
        assert result.is_err()
        assert session.state is S.LOGGED_OUT
        assert session.identity is None
        assert session.profile is None
        assert gateway.call_count("sign_out") == 1


class TestCancellation:
    """Cancelled operations never leave the lifecycle in a transient state."""

    def test_login_cancelled_during_backoff(self, gateway, store):
        _seed(gateway, store)
        gateway.script("authenticate", _transient())
        slow = SessionConfig(retry=RetryConfig(base_delay_ms=1000, max_delay_ms=1000))

        async def scenario(manager):
            login = asyncio.create_task(manager.login(EMAIL, SECRET))
            await asyncio.sleep(0.05)
            login.cancel()
            with pytest.raises(asyncio.CancelledError):
                await login
            after_cancel = manager.get_session()
            retried = await manager.login(EMAIL, SECRET)
            return after_cancel, retried

        after_cancel, retried = _run(gateway, store, scenario, config=slow)

        assert after_cancel.state is S.LOGGED_OUT
        assert after_cancel.identity is None
        assert retried.is_ok()
        assert retried.unwrap().state is S.AUTHENTICATED

    def test_register_cancelled_during_remote_call(self, store):
        gateway = _GatedGateway("create_identity")

        async def scenario(manager):
            register = asyncio.create_task(manager.register(EMAIL, SECRET, "Ada", "+216"))
            await gateway.entered.wait()
            register.cancel()
            with pytest.raises(asyncio.CancelledError):
                await register
            return manager.get_session()

        session = _run(gateway, store, scenario)

        assert session.state is S.LOGGED_OUT
        assert store.calls == []

    def test_restore_cancelled_during_lookup(self, store):
        gateway = _GatedGateway("get_current_session")

        async def scenario(manager):
            restore = asyncio.create_task(manager.restore())
            await gateway.entered.wait()
            restore.cancel()
            with pytest.raises(asyncio.CancelledError):
                await restore
            return manager.get_session()

        assert _run(gateway, store, scenario).state is S.LOGGED_OUT

    def test_cancelled_refresh_keeps_session(self, store):
        gateway = _GatedGateway("refresh_session")
        _seed(gateway, store)

        async def scenario(manager):
            await manager.login(EMAIL, SECRET)
            before = manager.get_session().identity
            refresh = asyncio.create_task(manager.refresh_session())
            await gateway.entered.wait()
            refresh.cancel()
            with pytest.raises(asyncio.CancelledError):
                await refresh
            return before, manager.get_session()

        before, session = _run(gateway, store, scenario)

        assert session.state is S.AUTHENTICATED
        assert session.state.is_stable
        assert session.identity == before
        assert gateway.call_count("sign_out") == 0

    def test_close_during_monitor_refresh(self, store):
        gateway = _GatedGateway("refresh_session", session_ttl_s=120)
        _seed(gateway, store)
        config = SessionConfig(
            retry=RetryConfig(base_delay_ms=0, max_delay_ms=0),
            monitor=MonitorConfig(poll_interval_s=0.01),
        )

        async def scenario():
            manager = SessionManager(gateway, store, config)
            await manager.login(EMAIL, SECRET)
            await gateway.entered.wait()
            in_flight = manager.get_session().state
            await manager.close()
            return in_flight, manager.get_session(), manager.monitor.running

        in_flight, session, running = asyncio.run(scenario())

        assert in_flight is S.REFRESHING
        assert session.state is S.AUTHENTICATED
        assert session.state.is_stable
        assert session.identity is not None
        assert not running
        assert gateway.call_count("sign_out") == 0


class TestSessionRefresh:
    """Tests for explicit session refresh."""

    def test_refresh_extends_expiry(self, store):
        gateway = InMemoryIdentityGateway(session_ttl_s=120)
        _seed(gateway, store)
        new_expiry = Timestamp.in_seconds(7200)
        gateway.script("refresh_session", Ok(new_expiry))

        async def scenario(manager):
            await manager.login(EMAIL, SECRET)
            return await manager.refresh_session(), manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert result == Ok(new_expiry)
        assert session.state is S.AUTHENTICATED
        assert session.identity.expires_at == new_expiry

    def test_refresh_failure_fails_closed(self, gateway, store):
        _seed(gateway, store)
        gateway.script("refresh_session", Err(TransientBackendError.unreachable("refresh_session")))

        async def scenario(manager):
            await manager.login(EMAIL, SECRET)
            return await manager.refresh_session(), manager.get_session()

        result, session = _run(gateway, store, scenario)

        assert result.is_err()
        assert session.state is S.LOGGED_OUT
        assert gateway.call_count("refresh_session") == 1

    def test_refresh_requires_session(self, gateway, store):
        async def scenario(manager):
            return await manager.refresh_session()

        assert _run(gateway, store, scenario).error.code is ErrorCode.VALIDATION_INVALID_STATE


class TestSubscribe:
    """Tests for change notifications."""

    def test_state_and_profile_notifications(self, gateway, store):
        _seed(gateway, store)
        changes = []

        async def scenario(manager):
            manager.subscribe(changes.append)
            await manager.login(EMAIL, SECRET)
            await manager.wait_for_profile()
            await manager.logout()

        _run(gateway, store, scenario)

        states = [c.snapshot.state for c in changes if c.kind is ChangeKind.STATE]
        assert states == [S.AUTHENTICATING, S.AUTHENTICATED, S.LOGGED_OUT]
        profiles = [c.snapshot.profile for c in changes if c.kind is ChangeKind.PROFILE]
        assert profiles[0].full_name == "Ada"

    def test_unsubscribe_and_faulty_listener(self, gateway, store):
        _seed(gateway, store)
        seen = []

        def broken(change):
            raise RuntimeError("ui bug")

        async def scenario(manager):
            manager.subscribe(broken)
            unsubscribe = manager.subscribe(seen.append)
            unsubscribe()
            return await manager.login(EMAIL, SECRET)

        assert _run(gateway, store, scenario).is_ok()
        assert seen == []
