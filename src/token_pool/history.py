"""Lease history: one record per interval a token was held."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from .models import LeaseRecord, parse_uuid
from .storage import StoreTransaction, TokenStore

LOGGER = logging.getLogger(__name__)


class LeaseHistory:
    """Append-only registry of lease intervals.

    Writes take the caller's transaction so that they land together with
    the matching token update.
    """

    def __init__(self, store: TokenStore) -> None:
        self._store = store

    async def history(self, token_id: Any) -> list[LeaseRecord]:
        """Lease records for ``token_id``, most recent first; empty for unknown ids."""

        parsed = parse_uuid(token_id)
        if parsed is None:
            return []
        async with self._store.reader() as reader:
            return await reader.lease_history(parsed)

    async def open_lease(
        self, transaction: StoreTransaction, token_id: UUID, holder: UUID, started_at: datetime
    ) -> LeaseRecord:
        return await transaction.open_lease(token_id, holder, started_at)

    async def close_open_lease(self, transaction: StoreTransaction, token_id: UUID, ended_at: datetime) -> int:
        """Close the token's open interval; a no-op when none is open."""

        return await self.close_open_leases(transaction, [token_id], ended_at)

    async def close_open_leases(
        self, transaction: StoreTransaction, token_ids: Iterable[UUID], ended_at: datetime
    ) -> int:
        ids = list(dict.fromkeys(token_ids))
        if not ids:
            return 0
        closed = await transaction.close_open_leases(ids, ended_at)
        if closed != len(ids):
            LOGGER.debug("Closed %d open lease(s) for %d token(s)", closed, len(ids))
        return closed


__all__ = ["LeaseHistory"]
