"""Background loop that periodically expires stale leases."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from .expiration import TokenExpiration

LOGGER = logging.getLogger(__name__)


class ReaperState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"


class ExpirationReaper:
    """Run one expiry sweep every ``interval_seconds``.

    A failed sweep is logged and the next tick is scheduled as usual, so a
    storage outage heals on a later cycle instead of killing the loop.
    """

    def __init__(self, expiration: TokenExpiration, interval_seconds: float = 30.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._expiration = expiration
        self._interval = interval_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._state = ReaperState.IDLE
        self._last_result: Optional[int] = None
        self._last_error: Optional[BaseException] = None
        self._sweeps = 0

    async def start(self) -> None:
        """Start the reaper loop."""

        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name="token-expiration-reaper")
        LOGGER.info("Expiration reaper started (interval %.1fs)", self._interval)

    async def stop(self) -> None:
        """Stop the reaper and wait for the loop to exit."""

        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        LOGGER.info("Expiration reaper stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def state(self) -> ReaperState:
        return self._state

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def last_result(self) -> Optional[int]:
        """Tokens released by the most recent successful sweep."""
        return self._last_result

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    @property
    def sweeps(self) -> int:
        return self._sweeps

    async def check_now(self) -> int:
        """Run one sweep immediately and return the number of tokens released.

        Unlike the periodic loop, errors propagate to the caller.
        """

        self._state = ReaperState.CHECKING
        try:
            released = await self._expiration.release_expired()
        except Exception as exc:
            self._last_error = exc
            raise
        finally:
            self._sweeps += 1
            self._state = ReaperState.IDLE
        self._last_result = released
        self._last_error = None
        return released

    async def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                    break
                except asyncio.TimeoutError:
                    pass
                await self._tick()
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            LOGGER.info("Expiration reaper cancelled")
            raise

    async def _tick(self) -> None:
        try:
            released = await self.check_now()
        except Exception as exc:
            LOGGER.exception("Expiration sweep failed: %s", exc)
            return
        if released:
            LOGGER.info("Reaper released %d expired token(s)", released)
        else:
            LOGGER.debug("Reaper found no expired tokens")


__all__ = ["ExpirationReaper", "ReaperState"]
