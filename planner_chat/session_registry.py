"""
Session registry: one live ConversationDriver per session id.

Sessions are created on first use, reused on every later message so the
conversation history survives, and evicted after a period of inactivity by a
background sweep.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

import structlog

from planner_chat.conversation import ConversationDriver, utc_now

logger = structlog.get_logger(__name__)

DEFAULT_IDLE_TIMEOUT = timedelta(minutes=30)
DEFAULT_SWEEP_INTERVAL = timedelta(minutes=5)

DriverFactory = Callable[[str, str], Awaitable[ConversationDriver]]


class SessionRegistry:
    """Authoritative map from session id to ConversationDriver."""

    def __init__(
        self,
        factory: DriverFactory,
        idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
        sweep_interval: timedelta = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._factory = factory
        self.idle_timeout = idle_timeout
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sessions: dict[str, ConversationDriver] = {}
        # Per-session creation locks; an entry lives while any caller holds or awaits it
        self._creation_locks: dict[str, asyncio.Lock] = {}
        self._creation_waiters: defaultdict[str, int] = defaultdict(int)
        self._sweep_task: asyncio.Task[None] | None = None

    async def get_or_create(self, session_id: str, user_id: str) -> ConversationDriver:
        """Return the session's driver, building it on first use."""
        if not session_id or not session_id.strip():
            raise ValueError("Session ID cannot be null or empty")
        if not user_id or not user_id.strip():
            raise ValueError("User ID cannot be null or empty")

        lock = self._creation_locks.setdefault(session_id, asyncio.Lock())
        self._creation_waiters[session_id] += 1
        try:
            async with lock:
                existing = self._sessions.get(session_id)
                if existing is not None:
                    age = (self._clock() - existing.created_time).total_seconds()
                    logger.debug(
                        "Reusing existing chat session",
                        session_id=session_id,
                        age_seconds=round(age, 1),
                    )
                    return existing

                logger.info("Creating new chat session", session_id=session_id, user_id=user_id)
                driver = await self._factory(session_id, user_id)
                self._sessions[session_id] = driver
        finally:
            self._release_creation_lock(session_id)

        logger.info(
            "Chat session created",
            session_id=session_id,
            total_sessions=len(self._sessions),
        )
        return driver

    def _release_creation_lock(self, session_id: str) -> None:
        self._creation_waiters[session_id] -= 1
        if self._creation_waiters[session_id] == 0:
            del self._creation_waiters[session_id]
            del self._creation_locks[session_id]

    def get(self, session_id: str) -> ConversationDriver | None:
        return self._sessions.get(session_id)

    def contains(self, session_id: str) -> bool:
        return session_id in self._sessions

    def active_count(self) -> int:
        """Number of registered sessions."""
        return len(self._sessions)

    async def remove(self, session_id: str) -> None:
        """Evict a session and release its tool connection; no-op if absent."""
        driver = self._sessions.pop(session_id, None)
        if driver is None:
            return

        logger.info("Removing chat session", session_id=session_id)
        await self._close_driver(session_id, driver)

    @staticmethod
    def _is_evictable(driver: ConversationDriver, cutoff: datetime) -> bool:
        return driver.last_access_time < cutoff and not driver.is_busy

    async def sweep(self, now: datetime | None = None) -> list[str]:
        """
        Evict sessions idle for longer than the timeout.

        Sessions with a respond() in flight are left for a later sweep. Each
        candidate is checked again right before eviction, since closing an
        earlier one yields to other requests.

        Returns:
            The evicted session ids.
        """
        now = now or self._clock()
        cutoff = now - self.idle_timeout
        candidates = [
            session_id
            for session_id, driver in self._sessions.items()
            if self._is_evictable(driver, cutoff)
        ]
        if not candidates:
            return []

        logger.info(
            "Cleaning up inactive sessions",
            count=len(candidates),
            idle_timeout_minutes=self.idle_timeout.total_seconds() / 60,
        )
        evicted: list[str] = []
        for session_id in candidates:
            driver = self._sessions.get(session_id)
            if driver is None or not self._is_evictable(driver, cutoff):
                logger.debug("Session became active during cleanup", session_id=session_id)
                continue
            logger.debug(
                "Removed inactive session",
                session_id=session_id,
                age_minutes=round((now - driver.created_time).total_seconds() / 60, 1),
                inactive_minutes=round(
                    (now - driver.last_access_time).total_seconds() / 60, 1
                ),
            )
            evicted.append(session_id)
            await self.remove(session_id)

        logger.info("Cleanup complete", remaining_sessions=len(self._sessions))
        return evicted

    async def _sweep_loop(self) -> None:
        interval = self.sweep_interval.total_seconds()
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Error during session cleanup", error=str(e))

    def start(self) -> None:
        """Start the periodic idle sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(
                self._sweep_loop(), name="session-idle-sweep"
            )

    async def stop(self) -> None:
        """Stop the sweep and close every session."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

        for session_id in list(self._sessions):
            await self.remove(session_id)
        logger.info("Session registry stopped")

    async def _close_driver(self, session_id: str, driver: ConversationDriver) -> None:
        try:
            await driver.close()
            logger.debug("Chat session disposed", session_id=session_id)
        except Exception as e:
            logger.error("Error disposing chat session", session_id=session_id, error=str(e))
