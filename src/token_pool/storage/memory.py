"""In-process token store.

All state lives in dictionaries guarded by a single ``asyncio.Lock`` that a
transaction holds from start to commit, so transactions are fully serialised
and the skip-locked claim degenerates to "take any available token". Writes
are buffered on the transaction and applied only on a clean exit.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Iterable, Mapping, Optional, Sequence
from uuid import UUID

from ..errors import TokenNotFound
from ..models import LeaseRecord, Token, TokenState
from .base import StoreTransaction, TokenReader, TokenStore

LOGGER = logging.getLogger(__name__)


@dataclass
class _PoolState:
    tokens: dict[UUID, Token] = field(default_factory=dict)
    leases: dict[UUID, list[LeaseRecord]] = field(default_factory=dict)


class MemoryReader(TokenReader):
    """Reads over the committed pool state."""

    def __init__(self, state: _PoolState) -> None:
        self._state = state

    def _tokens(self) -> Mapping[UUID, Token]:
        return self._state.tokens

    def _leases(self, token_id: UUID) -> list[LeaseRecord]:
        return self._state.leases.get(token_id, [])

    def _with_usage(self, token: Token) -> Token:
        return token.model_copy(update={"usage_count": len(self._leases(token.id))})

    def _active_oldest_first(self) -> list[Token]:
        active = [token for token in self._tokens().values() if token.is_active]
        return sorted(active, key=lambda token: (token.activated_at, token.id))

    async def count_tokens(self, state: Optional[TokenState] = None) -> int:
        if state is None:
            return len(self._tokens())
        return sum(1 for token in self._tokens().values() if token.state is state)

    async def list_tokens(self, state: Optional[TokenState] = None, *, with_usage_count: bool = False) -> list[Token]:
        if state is TokenState.ACTIVE:
            tokens = self._active_oldest_first()
        else:
            tokens = sorted(
                (token for token in self._tokens().values() if state is None or token.state is state),
                key=lambda token: token.id,
            )
        if with_usage_count:
            return [self._with_usage(token) for token in tokens]
        return tokens

    async def get_token(self, token_id: UUID, *, with_usage_count: bool = False) -> Optional[Token]:
        token = self._tokens().get(token_id)
        if token is None or not with_usage_count:
            return token
        return self._with_usage(token)

    async def get_active_by_holder(self, holder: UUID) -> Optional[Token]:
        held = [token for token in self._active_oldest_first() if token.holder == holder]
        return held[-1] if held else None

    async def find_expired(self, cutoff: datetime) -> list[Token]:
        return [token for token in self._active_oldest_first() if token.activated_at < cutoff]

    async def lease_history(self, token_id: UUID) -> list[LeaseRecord]:
        # Newest insert wins ties on started_at.
        return sorted(reversed(self._leases(token_id)), key=lambda lease: lease.started_at, reverse=True)


class MemoryTransaction(MemoryReader, StoreTransaction):
    """Buffered unit of work over the pool state."""

    def __init__(self, state: _PoolState) -> None:
        super().__init__(state)
        self._token_writes: dict[UUID, Token] = {}
        self._lease_writes: dict[UUID, list[LeaseRecord]] = {}

    def _tokens(self) -> Mapping[UUID, Token]:
        if not self._token_writes:
            return self._state.tokens
        return {**self._state.tokens, **self._token_writes}

    def _leases(self, token_id: UUID) -> list[LeaseRecord]:
        if token_id in self._lease_writes:
            return self._lease_writes[token_id]
        return self._state.leases.get(token_id, [])

    def _writable_leases(self, token_id: UUID) -> list[LeaseRecord]:
        if token_id not in self._lease_writes:
            self._lease_writes[token_id] = list(self._state.leases.get(token_id, []))
        return self._lease_writes[token_id]

    def commit(self) -> None:
        self._state.tokens.update(self._token_writes)
        self._state.leases.update(self._lease_writes)
        LOGGER.debug(
            "Committed %d token write(s) and %d lease list update(s)",
            len(self._token_writes),
            len(self._lease_writes),
        )

    async def acquire_admission_lock(self) -> None:
        # Transactions already run one at a time.
        return None

    async def lock_token(self, token_id: UUID) -> Optional[Token]:
        return self._tokens().get(token_id)

    async def lock_oldest_active(self) -> Optional[Token]:
        active = self._active_oldest_first()
        return active[0] if active else None

    async def claim_available(self) -> Optional[Token]:
        available = [token for token in self._tokens().values() if token.state is TokenState.AVAILABLE]
        # Prefer tokens this transaction has not just released.
        untouched = [token for token in available if token.id not in self._token_writes]
        candidates = untouched or available
        return candidates[0] if candidates else None

    async def lock_active(self) -> list[UUID]:
        return [token.id for token in self._active_oldest_first()]

    async def lock_expired(self, cutoff: datetime) -> list[UUID]:
        return [token.id for token in await self.find_expired(cutoff)]

    async def activate(self, token_id: UUID, holder: UUID, now: datetime) -> Token:
        token = self._tokens().get(token_id)
        if token is None:
            raise TokenNotFound(f"Token {token_id} does not exist")
        activated = token.activated(holder, now)
        self._token_writes[token_id] = activated
        return activated

    async def mark_available(self, token_ids: Sequence[UUID], now: datetime) -> int:
        tokens = self._tokens()
        changed = 0
        for token_id in token_ids:
            token = tokens.get(token_id)
            if token is None or not token.is_active:
                continue
            self._token_writes[token_id] = token.released(now)
            changed += 1
        return changed

    async def open_lease(self, token_id: UUID, holder: UUID, started_at: datetime) -> LeaseRecord:
        lease = LeaseRecord(id=uuid.uuid4(), token_id=token_id, holder=holder, started_at=started_at)
        self._writable_leases(token_id).append(lease)
        return lease

    async def close_open_leases(self, token_ids: Sequence[UUID], ended_at: datetime) -> int:
        closed = 0
        for token_id in set(token_ids):
            if not any(lease.is_open for lease in self._leases(token_id)):
                continue
            leases = self._writable_leases(token_id)
            for index, lease in enumerate(leases):
                if lease.is_open:
                    leases[index] = lease.closed(ended_at)
                    closed += 1
        return closed

    async def insert_tokens(self, token_ids: Iterable[UUID]) -> int:
        inserted = 0
        for token_id in token_ids:
            if token_id in self._tokens():
                continue
            self._token_writes[token_id] = Token(id=token_id)
            inserted += 1
        return inserted


class MemoryTokenStore(TokenStore):
    """Token store kept entirely in process memory."""

    def __init__(self) -> None:
        self._state = _PoolState()
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        LOGGER.debug("Using in-memory token store")

    async def close(self) -> None:
        return None

    async def ping(self) -> bool:
        return True

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemoryTransaction]:
        async with self._lock:
            transaction = MemoryTransaction(self._state)
            yield transaction
            transaction.commit()

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[MemoryReader]:
        yield MemoryReader(self._state)


__all__ = ["MemoryReader", "MemoryTokenStore", "MemoryTransaction"]
