"""Lease acquisition: the transactional entry point of the pool."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from .errors import InvalidHolder, NoAvailableTokens, TokenPoolError
from .events import LEASE_ACQUIRED, LEASE_FAILED, EventSink, NullEventSink, elapsed_ms, emit_safely
from .history import LeaseHistory
from .models import Registration, TokenState, parse_uuid, utc_now
from .release import TokenRelease
from .storage import TokenStore

LOGGER = logging.getLogger(__name__)


class TokenRegistration:
    """Bind an available token to a holder, evicting the oldest lease when full.

    The capacity check, any eviction, the claim and the history insert run
    in one transaction: if any step fails the eviction is rolled back too.
    """

    def __init__(
        self,
        store: TokenStore,
        release: TokenRelease,
        history: LeaseHistory,
        *,
        max_active_tokens: int = 100,
        clock: Optional[Callable[[], datetime]] = None,
        sink: Optional[EventSink] = None,
    ) -> None:
        if max_active_tokens <= 0:
            raise ValueError("max_active_tokens must be positive")
        self._store = store
        self._release = release
        self._history = history
        self._max_active_tokens = max_active_tokens
        self._clock = clock or utc_now
        self._sink = sink or NullEventSink()

    @property
    def max_active_tokens(self) -> int:
        return self._max_active_tokens

    async def register_usage(self, holder: Any) -> Registration:
        """Lease a token to ``holder`` and return the binding."""

        started = time.monotonic()
        try:
            parsed = parse_uuid(holder)
            if parsed is None:
                raise InvalidHolder(f"Malformed holder id: {holder!r}")
            registration = await self._register(parsed)
        except TokenPoolError as exc:
            LOGGER.warning("Token activation failed for %r: %s", holder, exc.code)
            emit_safely(
                self._sink,
                LEASE_FAILED,
                {"duration_ms": elapsed_ms(started)},
                {"user_id": holder, "reason": exc.code},
            )
            raise

        metadata = {"token_id": registration.token_id, "user_id": registration.holder}
        if registration.evicted_token_id is not None:
            metadata["evicted_token_id"] = registration.evicted_token_id
        emit_safely(self._sink, LEASE_ACQUIRED, {"duration_ms": elapsed_ms(started)}, metadata)
        return registration

    async def _register(self, holder: UUID) -> Registration:
        async with self._store.transaction() as transaction:
            now = self._clock()
            # With a pool no larger than the cap, the pool size itself bounds
            # the active count and claims can proceed without serialising.
            if self._max_active_tokens < await transaction.count_tokens():
                await transaction.acquire_admission_lock()

            evicted = None
            if await transaction.count_tokens(TokenState.ACTIVE) >= self._max_active_tokens:
                evicted = await self._release.evict_oldest_in(transaction, now)

            token = await transaction.claim_available()
            if token is None and evicted is None:
                # Every free row was claimed by a concurrent transaction.
                evicted = await self._release.evict_oldest_in(transaction, now)
                if evicted is not None:
                    token = await transaction.claim_available()
            if token is None:
                raise NoAvailableTokens("No available token could be claimed")

            await transaction.activate(token.id, holder, now)
            await self._history.open_lease(transaction, token.id, holder, now)

        if evicted is not None:
            LOGGER.info("Evicted token %s to admit holder %s", evicted.id, holder)
        return Registration(
            token_id=token.id,
            holder=holder,
            evicted_token_id=evicted.id if evicted is not None else None,
        )


__all__ = ["TokenRegistration"]
