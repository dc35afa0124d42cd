"""Finding and releasing leases that outlived their lifetime."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from .events import SWEEP_COMPLETED, SWEEP_FAILED, EventSink, NullEventSink, elapsed_ms, emit_safely
from .history import LeaseHistory
from .models import Token, utc_now
from .storage import TokenStore

LOGGER = logging.getLogger(__name__)


class TokenExpiration:
    """Bulk expiry of stale leases."""

    def __init__(
        self,
        store: TokenStore,
        history: LeaseHistory,
        *,
        lifetime: timedelta = timedelta(minutes=2),
        clock: Optional[Callable[[], datetime]] = None,
        sink: Optional[EventSink] = None,
    ) -> None:
        if lifetime <= timedelta(0):
            raise ValueError("lifetime must be positive")
        self._store = store
        self._history = history
        self._lifetime = lifetime
        self._clock = clock or utc_now
        self._sink = sink or NullEventSink()

    @property
    def lifetime(self) -> timedelta:
        return self._lifetime

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        """Leases activated strictly before this instant are expired."""

        return (now or self._clock()) - self._lifetime

    async def find_expired(self) -> list[Token]:
        """Active tokens past their lifetime, oldest first."""

        async with self._store.reader() as reader:
            return await reader.find_expired(self.cutoff())

    async def release_expired(self) -> int:
        """Release every expired lease in one transaction and return the count."""

        started = time.monotonic()
        try:
            expired, released = await self._release_expired()
        except Exception as exc:
            emit_safely(
                self._sink,
                SWEEP_FAILED,
                {"duration_ms": elapsed_ms(started)},
                {"reason": getattr(exc, "code", type(exc).__name__)},
            )
            raise

        if released:
            LOGGER.info("Released %d expired token(s)", released)
        emit_safely(
            self._sink,
            SWEEP_COMPLETED,
            {"duration_ms": elapsed_ms(started), "count": released},
            {"expired_count": expired},
        )
        return released

    async def _release_expired(self) -> tuple[int, int]:
        now = self._clock()
        cutoff = self.cutoff(now)
        async with self._store.reader() as reader:
            expired = await reader.find_expired(cutoff)
        if not expired:
            return 0, 0

        async with self._store.transaction() as transaction:
            # Re-select under lock: a lease may have been released or reclaimed since the read.
            token_ids = await transaction.lock_expired(cutoff)
            released = await transaction.mark_available(token_ids, now)
            await self._history.close_open_leases(transaction, token_ids, now)
        return len(expired), released


__all__ = ["TokenExpiration"]
