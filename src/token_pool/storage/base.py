"""Abstract storage interfaces for tokens and lease history."""

from __future__ import annotations

import abc
from datetime import datetime
from typing import AsyncContextManager, Iterable, Optional, Sequence
from uuid import UUID

from ..models import LeaseRecord, Token, TokenState


class TokenReader(abc.ABC):
    """Read access to the token table and the lease history.

    Reads never fail on missing data: lookups return ``None`` and listings
    return empty sequences.
    """

    @abc.abstractmethod
    async def count_tokens(self, state: Optional[TokenState] = None) -> int:
        """Count tokens, optionally restricted to one state."""

    @abc.abstractmethod
    async def list_tokens(self, state: Optional[TokenState] = None, *, with_usage_count: bool = False) -> list[Token]:
        """List tokens.

        Active tokens are ordered by ``activated_at`` ascending (oldest lease
        first), every other listing by ``id``.
        """

    @abc.abstractmethod
    async def get_token(self, token_id: UUID, *, with_usage_count: bool = False) -> Optional[Token]:
        """Return one token or ``None``."""

    @abc.abstractmethod
    async def get_active_by_holder(self, holder: UUID) -> Optional[Token]:
        """Return the holder's most recently activated token, if any."""

    @abc.abstractmethod
    async def find_expired(self, cutoff: datetime) -> list[Token]:
        """Active tokens with ``activated_at`` strictly before ``cutoff``, oldest first."""

    @abc.abstractmethod
    async def lease_history(self, token_id: UUID) -> list[LeaseRecord]:
        """Lease records for a token, most recent first."""


class StoreTransaction(TokenReader):
    """A unit of work over tokens and leases.

    Writes become visible to other callers only when the surrounding
    ``TokenStore.transaction()`` block exits without an exception.
    """

    @abc.abstractmethod
    async def acquire_admission_lock(self) -> None:
        """Serialise admission with every other admitting transaction."""

    @abc.abstractmethod
    async def lock_token(self, token_id: UUID) -> Optional[Token]:
        """Lock a single token for update, waiting for other holders of the lock."""

    @abc.abstractmethod
    async def lock_oldest_active(self) -> Optional[Token]:
        """Lock the active token with the smallest ``activated_at``.

        Ties are broken by ``id``. Rows locked by other transactions are
        skipped.
        """

    @abc.abstractmethod
    async def claim_available(self) -> Optional[Token]:
        """Lock one available token, skipping rows locked elsewhere.

        Tokens released in the current transaction are picked last.
        """

    @abc.abstractmethod
    async def lock_active(self) -> list[UUID]:
        """Lock every active token and return their ids."""

    @abc.abstractmethod
    async def lock_expired(self, cutoff: datetime) -> list[UUID]:
        """Lock active tokens activated before ``cutoff``, skipping locked rows."""

    @abc.abstractmethod
    async def activate(self, token_id: UUID, holder: UUID, now: datetime) -> Token:
        """Mark a locked token active for ``holder``."""

    @abc.abstractmethod
    async def mark_available(self, token_ids: Sequence[UUID], now: datetime) -> int:
        """Return active tokens among ``token_ids`` to the pool; returns the count changed."""

    @abc.abstractmethod
    async def open_lease(self, token_id: UUID, holder: UUID, started_at: datetime) -> LeaseRecord:
        """Insert an open lease record."""

    @abc.abstractmethod
    async def close_open_leases(self, token_ids: Sequence[UUID], ended_at: datetime) -> int:
        """Close the open lease of each token; tokens without one are ignored."""

    @abc.abstractmethod
    async def insert_tokens(self, token_ids: Iterable[UUID]) -> int:
        """Insert new available tokens."""


class TokenStore(abc.ABC):
    """Durable home of the token pool."""

    @abc.abstractmethod
    async def connect(self) -> None:
        """Prepare the backend for use."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release backend resources."""

    @abc.abstractmethod
    async def ping(self) -> bool:
        """Return True when the backend answers a trivial query."""

    @abc.abstractmethod
    def transaction(self) -> AsyncContextManager[StoreTransaction]:
        """Open a unit of work; an exception inside the block rolls it back."""

    @abc.abstractmethod
    def reader(self) -> AsyncContextManager[TokenReader]:
        """Open a read-only view over committed state."""


__all__ = ["StoreTransaction", "TokenReader", "TokenStore"]
