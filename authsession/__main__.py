#!/usr/bin/env python3
"""
Identity Session Manager

Entry point demonstrating the session lifecycle against the in-memory
identity provider and profile store.

Usage:
    python -m authsession

    # Or with custom config
    AUTHSESSION_RETRY_BASE_MS=50 AUTHSESSION_LOG_JSON=false python -m authsession
"""

from __future__ import annotations

import asyncio
import sys

from authsession.core.config import SessionConfig
from authsession.core.errors import TransientBackendError
from authsession.core.types import Err, ProfilePatch
from authsession.gateways.memory import InMemoryIdentityGateway, InMemoryProfileStore
from authsession.observability.logging import setup_logging
from authsession.session.manager import SessionChange, SessionManager


async def demo_local_mode() -> None:
    """
    Walk through register, logout, login with transient faults,
    profile update, and proactive refresh.
    """
    print("\n" + "=" * 60)
    print("Identity Session Manager - Local Demo")
    print("=" * 60 + "\n")

    config_result = SessionConfig.from_env()
    if config_result.is_err():
        print(f"Configuration error: {config_result.error}")
        sys.exit(1)

    config = config_result.unwrap()

    validation = config.validate()
    if validation.is_err():
        print(f"Validation error: {validation.error}")
        sys.exit(1)

    print("✓ Configuration loaded and validated")
    print(f"  Login attempts: {config.retry.login_max_attempts}")
    print(f"  Monitor interval: {config.monitor.poll_interval_s}s")

    setup_logging(config.observability.log_level, json_output=config.observability.log_json)
    print("✓ Logging initialized")

    gateway = InMemoryIdentityGateway()
    store = InMemoryProfileStore()

    def on_change(change: SessionChange) -> None:
        print(f"   [event] {change.kind.name}: state={change.snapshot.state.name}")

    async with SessionManager(gateway, store, config) as manager:
        manager.subscribe(on_change)

        print("\n--- Demo Operations ---\n")

        # 1. Register
        result = await manager.register("demo@example.com", "s3cret!", "Demo User", "+21600000000")
        if result.is_ok():
            session = result.unwrap()
            print(f"1. Registered identity {session.identity.id[:8]}..., profile={session.profile.full_name}")
        else:
            print(f"1. Registration failed: {result.error.category.name}")

        # 2. Logout
        await manager.logout()
        print(f"2. Logged out: state={manager.get_session().state.name}")

        # 3. Login through two transient faults
        gateway.script(
            "authenticate",
            Err(TransientBackendError.from_status(503, "authenticate")),
            Err(TransientBackendError.from_status(503, "authenticate")),
        )
        result = await manager.login("demo@example.com", "s3cret!")
        profile = await manager.wait_for_profile()
        print(
            f"3. Login after {gateway.call_count('authenticate')} attempts: "
            f"ok={result.is_ok()}, profile={profile.full_name if profile else None}"
        )

        # 4. Update profile
        update = await manager.update_profile(ProfilePatch(full_name="Demo User Updated"))
        if update.is_ok() and update.unwrap():
            print(f"4. Profile updated: {update.unwrap().full_name}")
        else:
            print(f"4. Profile update failed: {update}")

        # 5. Proactive refresh
        refreshed = await manager.refresh_session()
        print(f"5. Session refreshed: ok={refreshed.is_ok()}")

        # 6. Duplicate registration is rejected once logged out
        await manager.logout()
        dup = await manager.register("demo@example.com", "s3cret!", "Someone", "+21611111111")
        if dup.is_err():
            print(f"6. Duplicate registration rejected: {dup.error.category.name}")

    print("\n✓ Demo complete")
    print("=" * 60 + "\n")


async def main() -> None:
    """Main entry point."""
    try:
        await demo_local_mode()
    except KeyboardInterrupt:
        print("\nInterrupted")


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
