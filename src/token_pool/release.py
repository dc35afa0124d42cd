"""Releasing leases: single token, by holder, oldest active, and all at once."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from .errors import (
    InvalidHolder,
    InvalidTokenId,
    NoActiveTokenForHolder,
    NoActiveTokens,
    TokenNotFound,
    TokenPoolError,
)
from .events import (
    LEASE_RELEASED,
    LEASE_RELEASE_FAILED,
    LEASES_CLEARED,
    EventSink,
    NullEventSink,
    elapsed_ms,
    emit_safely,
)
from .history import LeaseHistory
from .models import Token, parse_uuid, utc_now
from .storage import StoreTransaction, TokenStore

LOGGER = logging.getLogger(__name__)


class TokenRelease:
    """Eviction policy and manual release paths.

    Every public method runs in its own transaction; the ``*_in`` helpers
    work inside a transaction owned by the caller so admission can evict and
    claim atomically.
    """

    def __init__(
        self,
        store: TokenStore,
        history: LeaseHistory,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        sink: Optional[EventSink] = None,
    ) -> None:
        self._store = store
        self._history = history
        self._clock = clock or utc_now
        self._sink = sink or NullEventSink()

    async def release_token(self, token_id: Any) -> Token:
        """Return a token to the pool.

        Releasing an available token is a no-op that returns it unchanged.
        """

        parsed = parse_uuid(token_id)
        if parsed is None:
            error = InvalidTokenId(f"Malformed token id: {token_id!r}")
            self._failed(token_id, error, None)
            raise error
        started = time.monotonic()
        try:
            async with self._store.transaction() as transaction:
                token = await transaction.lock_token(parsed)
                if token is None:
                    raise TokenNotFound(f"Token {parsed} does not exist")
                released = await self.release_locked_in(transaction, token, self._clock())
        except TokenPoolError as exc:
            self._failed(parsed, exc, started)
            raise
        self._released(released, token, started, reason="manual")
        return released

    async def release_by_holder(self, holder: Any) -> Token:
        """Release the holder's active token."""

        parsed = parse_uuid(holder)
        if parsed is None:
            error = InvalidHolder(f"Malformed holder id: {holder!r}")
            self._failed(holder, error, None)
            raise error
        started = time.monotonic()
        try:
            async with self._store.transaction() as transaction:
                candidate = await transaction.get_active_by_holder(parsed)
                token = await transaction.lock_token(candidate.id) if candidate is not None else None
                # The lease may have moved on between the lookup and the lock.
                if token is None or token.holder != parsed:
                    raise NoActiveTokenForHolder(f"Holder {parsed} has no active token")
                released = await self.release_locked_in(transaction, token, self._clock())
        except TokenPoolError as exc:
            self._failed(parsed, exc, started)
            raise
        self._released(released, token, started, reason="holder")
        return released

    async def release_oldest_active(self) -> UUID:
        """Release the globally oldest active lease and return its token id."""

        started = time.monotonic()
        try:
            async with self._store.transaction() as transaction:
                evicted = await self.evict_oldest_in(transaction, self._clock())
                if evicted is None:
                    raise NoActiveTokens("There are no active tokens to release")
        except TokenPoolError as exc:
            self._failed(None, exc, started)
            raise
        emit_safely(
            self._sink,
            LEASE_RELEASED,
            {"duration_ms": elapsed_ms(started)},
            {"token_id": evicted.id, "user_id": evicted.holder, "reason": "evicted"},
        )
        return evicted.id

    async def clear_all_active(self) -> int:
        """Release every active token in one transaction; returns how many were released."""

        started = time.monotonic()
        try:
            async with self._store.transaction() as transaction:
                now = self._clock()
                token_ids = await transaction.lock_active()
                count = await transaction.mark_available(token_ids, now)
                await self._history.close_open_leases(transaction, token_ids, now)
        except TokenPoolError as exc:
            self._failed("all", exc, started)
            raise
        LOGGER.info("Cleared %d active token(s)", count)
        emit_safely(self._sink, LEASES_CLEARED, {"duration_ms": elapsed_ms(started), "count": count})
        return count

    async def evict_oldest_in(self, transaction: StoreTransaction, now: datetime) -> Optional[Token]:
        """Release the oldest active token inside ``transaction``.

        Returns the token as it was before release, or ``None`` when nothing
        is active (or every active row is locked by someone else).
        """

        oldest = await transaction.lock_oldest_active()
        if oldest is None:
            return None
        await self.release_locked_in(transaction, oldest, now)
        LOGGER.debug("Evicted token %s held by %s since %s", oldest.id, oldest.holder, oldest.activated_at)
        return oldest

    async def release_locked_in(self, transaction: StoreTransaction, token: Token, now: datetime) -> Token:
        if not token.is_active:
            return token
        await transaction.mark_available([token.id], now)
        await self._history.close_open_lease(transaction, token.id, now)
        return token.released(now)

    def _released(self, released: Token, before: Token, started: float, *, reason: str) -> None:
        if not before.is_active:
            return
        emit_safely(
            self._sink,
            LEASE_RELEASED,
            {"duration_ms": elapsed_ms(started)},
            {"token_id": released.id, "user_id": before.holder, "reason": reason},
        )

    def _failed(self, subject: Any, exc: TokenPoolError, started: Optional[float]) -> None:
        measurements = {"duration_ms": elapsed_ms(started)} if started is not None else {}
        emit_safely(self._sink, LEASE_RELEASE_FAILED, measurements, {"subject": subject, "reason": exc.code})


__all__ = ["TokenRelease"]
