"""Unified entry point to the token pool.

``TokenPool`` wires the store, clock and event sink into the specialised
components and delegates to them:

- ``TokenRegistration`` - lease acquisition and capacity eviction
- ``TokenRelease`` - manual, per-holder, oldest-first and bulk release
- ``TokenQueries`` - listings, lookups and counts
- ``LeaseHistory`` - per-token lease records
- ``TokenExpiration`` - lifetime expiry used by the reaper
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from .config import TokenPoolSettings, get_settings
from .events import EventSink, NullEventSink
from .expiration import TokenExpiration
from .history import LeaseHistory
from .models import LeaseRecord, Registration, Token, TokenFilter, utc_now
from .queries import TokenQueries
from .reaper import ExpirationReaper
from .registration import TokenRegistration
from .release import TokenRelease
from .storage import TokenStore


class TokenPool:
    """Facade over every token pool operation."""

    def __init__(
        self,
        store: TokenStore,
        settings: Optional[TokenPoolSettings] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        sink: Optional[EventSink] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.clock = clock or utc_now
        self.sink = sink or NullEventSink()

        self.queries = TokenQueries(store)
        self.lease_history = LeaseHistory(store)
        self.releases = TokenRelease(store, self.lease_history, clock=self.clock, sink=self.sink)
        self.registrations = TokenRegistration(
            store,
            self.releases,
            self.lease_history,
            max_active_tokens=self.settings.max_active_tokens,
            clock=self.clock,
            sink=self.sink,
        )
        self.expirations = TokenExpiration(
            store,
            self.lease_history,
            lifetime=self.settings.lease_lifetime,
            clock=self.clock,
            sink=self.sink,
        )

    def create_reaper(self) -> ExpirationReaper:
        return ExpirationReaper(self.expirations, self.settings.check_interval_seconds)

    # Registration
    async def register_usage(self, holder: Any) -> Registration:
        return await self.registrations.register_usage(holder)

    # Release
    async def release_token(self, token_id: Any) -> Token:
        return await self.releases.release_token(token_id)

    async def release_by_holder(self, holder: Any) -> Token:
        return await self.releases.release_by_holder(holder)

    async def release_oldest_active(self) -> UUID:
        return await self.releases.release_oldest_active()

    async def clear_all_active(self) -> int:
        return await self.releases.clear_all_active()

    # Queries
    async def list_tokens(
        self, state_filter: TokenFilter | str = TokenFilter.ALL, *, with_usage_count: bool = False
    ) -> list[Token]:
        return await self.queries.list_tokens(state_filter, with_usage_count=with_usage_count)

    async def list_available(self) -> list[Token]:
        return await self.queries.list_available()

    async def list_active(self, *, with_usage_count: bool = False) -> list[Token]:
        return await self.queries.list_active(with_usage_count=with_usage_count)

    async def get_token(self, token_id: Any, *, with_usage_count: bool = False) -> Optional[Token]:
        return await self.queries.get_token(token_id, with_usage_count=with_usage_count)

    async def get_token_by_holder(self, holder: Any) -> Optional[Token]:
        return await self.queries.get_token_by_holder(holder)

    async def count_active(self) -> int:
        return await self.queries.count_active()

    async def count_available(self) -> int:
        return await self.queries.count_available()

    # History
    async def history(self, token_id: Any) -> list[LeaseRecord]:
        return await self.lease_history.history(token_id)

    # Expiration
    async def find_expired(self) -> list[Token]:
        return await self.expirations.find_expired()

    async def release_expired(self) -> int:
        return await self.expirations.release_expired()


__all__ = ["TokenPool"]
