"""
Session Monitor: Background Expiry Watch and Proactive Refresh

Polls the cached identity's expiry on a fixed interval:
    1. Expired            → force logout
    2. Within threshold   → refresh; on failure the session fails closed
    3. Otherwise          → nothing to do

The monitor is a start/stop-scoped asyncio task. Every start() must be
paired with a stop() on each exit path (logout, teardown); the owning
SessionManager guarantees the pairing, and `async with` is available for
standalone use.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto
from typing import Any, Callable, Optional, Protocol

from authsession.core.config import MonitorConfig
from authsession.core.errors import AuthSessionError
from authsession.core.types import Result, Timestamp

logger = logging.getLogger(__name__)


class MonitoredSession(Protocol):
    """What the monitor needs from its owning session."""

    def current_expiry(self) -> Optional[Timestamp]:
        ...

    async def refresh_session(self) -> Result[Timestamp, AuthSessionError]:
        ...

    async def expire(self) -> None:
        ...


class MonitorAction(Enum):
    """Outcome of a single monitor tick."""
    IDLE = auto()            # No identity cached
    HEALTHY = auto()         # Expiry comfortably in the future
    REFRESHED = auto()       # Refresh succeeded, expiry extended
    REFRESH_FAILED = auto()  # Refresh failed, session logged out
    EXPIRED = auto()         # Expiry passed, session logged out


class SessionMonitor:
    """
    Timer-driven watcher for session expiry.

    Usage:
        monitor = SessionMonitor(manager, config.monitor)
        await monitor.start()
        ...
        await monitor.stop()
    """

    __slots__ = ("_session", "_config", "_clock", "_task")

    def __init__(
        self,
        session: MonitoredSession,
        config: Optional[MonitorConfig] = None,
        clock: Callable[[], Timestamp] = Timestamp.now,
    ) -> None:
        self._session = session
        self._config = config or MonitorConfig()
        self._clock = clock
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """
        Start polling; restarts the interval clock if already running.
        """
        await self.stop()
        self._task = asyncio.create_task(self._run(), name="session-monitor")
        logger.debug(f"Session monitor started (interval={self._config.poll_interval_s}s)")

    async def stop(self) -> None:
        """
        Stop polling. Idempotent.

        Safe to call from within a tick (a tick that logs out stops its
        own monitor): the loop then exits once the tick returns.
        """
        task, self._task = self._task, None
        if task is None:
            return
        if task is asyncio.current_task():
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Session monitor stopped")

    async def tick(self) -> MonitorAction:
        """Run one expiry check."""
        expiry = self._session.current_expiry()
        if expiry is None:
            return MonitorAction.IDLE

        now = self._clock()
        if now >= expiry:
            logger.info("Session expired, logging out")
            await self._session.expire()
            return MonitorAction.EXPIRED

        remaining_s = (expiry - now) / Timestamp.NANOS_PER_SECOND
        if remaining_s < self._config.refresh_threshold_s:
            logger.debug(f"Session expires in {remaining_s:.0f}s, refreshing")
            result = await self._session.refresh_session()
            if result.is_ok():
                return MonitorAction.REFRESHED
            return MonitorAction.REFRESH_FAILED

        return MonitorAction.HEALTHY

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self._config.poll_interval_s)
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Session monitor tick failed")

    async def __aenter__(self) -> SessionMonitor:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
