"""Async Postgres token store built on asyncpg."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional, Sequence
from uuid import UUID

import asyncpg

from ..config import TokenPoolSettings
from ..errors import StorageFailure, TokenNotFound
from ..models import LeaseRecord, Token, TokenState
from .base import StoreTransaction, TokenReader, TokenStore

LOGGER = logging.getLogger(__name__)

# Key for pg_advisory_xact_lock; any constant shared by all processes works.
ADMISSION_LOCK_KEY = 0x746F6B656E73

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS tokens (
    id UUID PRIMARY KEY,
    state TEXT NOT NULL DEFAULT 'available' CHECK (state IN ('available', 'active')),
    holder UUID,
    activated_at TIMESTAMPTZ,
    released_at TIMESTAMPTZ,
    inserted_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT tokens_active_has_holder
        CHECK ((state = 'active') = (holder IS NOT NULL AND activated_at IS NOT NULL))
);

CREATE INDEX IF NOT EXISTS idx_tokens_state ON tokens (state);
CREATE INDEX IF NOT EXISTS idx_tokens_activated_at ON tokens (activated_at);

CREATE TABLE IF NOT EXISTS token_usages (
    id UUID PRIMARY KEY,
    token_id UUID NOT NULL REFERENCES tokens (id) ON DELETE CASCADE,
    holder UUID NOT NULL,
    started_at TIMESTAMPTZ NOT NULL,
    ended_at TIMESTAMPTZ,
    inserted_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
);

CREATE INDEX IF NOT EXISTS idx_token_usages_token_id ON token_usages (token_id);
CREATE INDEX IF NOT EXISTS idx_token_usages_holder ON token_usages (holder);
CREATE INDEX IF NOT EXISTS idx_token_usages_started_at ON token_usages (started_at);
CREATE UNIQUE INDEX IF NOT EXISTS idx_token_usages_one_open
    ON token_usages (token_id) WHERE ended_at IS NULL;
"""

_TOKEN_COLUMNS = "t.id, t.state, t.holder, t.activated_at, t.released_at"

_WITH_USAGE_SQL = f"""
    SELECT {_TOKEN_COLUMNS}, COUNT(u.id) AS usage_count
    FROM tokens t
    LEFT JOIN token_usages u ON u.token_id = t.id
"""


class PostgresReader(TokenReader):
    """Reads executed on a single pooled connection."""

    def __init__(self, connection: asyncpg.Connection) -> None:
        self._connection = connection

    async def count_tokens(self, state: Optional[TokenState] = None) -> int:
        if state is None:
            return await self._connection.fetchval("SELECT COUNT(*) FROM tokens")
        return await self._connection.fetchval("SELECT COUNT(*) FROM tokens WHERE state = $1", state.value)

    async def list_tokens(self, state: Optional[TokenState] = None, *, with_usage_count: bool = False) -> list[Token]:
        order_by = "t.activated_at ASC, t.id ASC" if state is TokenState.ACTIVE else "t.id ASC"
        where = "WHERE t.state = $1" if state is not None else ""
        if with_usage_count:
            query = f"{_WITH_USAGE_SQL} {where} GROUP BY t.id ORDER BY {order_by}"
        else:
            query = f"SELECT {_TOKEN_COLUMNS} FROM tokens t {where} ORDER BY {order_by}"
        args = (state.value,) if state is not None else ()
        rows = await self._connection.fetch(query, *args)
        return [Token.from_row(row) for row in rows]

    async def get_token(self, token_id: UUID, *, with_usage_count: bool = False) -> Optional[Token]:
        if with_usage_count:
            query = f"{_WITH_USAGE_SQL} WHERE t.id = $1 GROUP BY t.id"
        else:
            query = f"SELECT {_TOKEN_COLUMNS} FROM tokens t WHERE t.id = $1"
        row = await self._connection.fetchrow(query, token_id)
        return Token.from_row(row) if row is not None else None

    async def get_active_by_holder(self, holder: UUID) -> Optional[Token]:
        row = await self._connection.fetchrow(
            f"""
            SELECT {_TOKEN_COLUMNS} FROM tokens t
            WHERE t.state = 'active' AND t.holder = $1
            ORDER BY t.activated_at DESC, t.id DESC
            LIMIT 1
            """,
            holder,
        )
        return Token.from_row(row) if row is not None else None

    async def find_expired(self, cutoff: datetime) -> list[Token]:
        rows = await self._connection.fetch(
            f"""
            SELECT {_TOKEN_COLUMNS} FROM tokens t
            WHERE t.state = 'active' AND t.activated_at < $1
            ORDER BY t.activated_at ASC, t.id ASC
            """,
            cutoff,
        )
        return [Token.from_row(row) for row in rows]

    async def lease_history(self, token_id: UUID) -> list[LeaseRecord]:
        rows = await self._connection.fetch(
            """
            SELECT id, token_id, holder, started_at, ended_at FROM token_usages
            WHERE token_id = $1
            ORDER BY started_at DESC, inserted_at DESC
            """,
            token_id,
        )
        return [LeaseRecord.from_row(row) for row in rows]


class PostgresTransaction(PostgresReader, StoreTransaction):
    """Row-locking operations; only valid inside ``connection.transaction()``."""

    async def acquire_admission_lock(self) -> None:
        await self._connection.execute("SELECT pg_advisory_xact_lock($1)", ADMISSION_LOCK_KEY)

    async def lock_token(self, token_id: UUID) -> Optional[Token]:
        row = await self._connection.fetchrow(
            f"SELECT {_TOKEN_COLUMNS} FROM tokens t WHERE t.id = $1 FOR UPDATE",
            token_id,
        )
        return Token.from_row(row) if row is not None else None

    async def lock_oldest_active(self) -> Optional[Token]:
        # SKIP LOCKED: while another transaction holds the oldest row (e.g. a
        # manual release), admission evicts the next oldest lease instead of
        # waiting, so one admission can coincide with two leases ending.
        row = await self._connection.fetchrow(
            f"""
            SELECT {_TOKEN_COLUMNS} FROM tokens t
            WHERE t.state = 'active'
            ORDER BY t.activated_at ASC, t.id ASC
            LIMIT 1
            FOR UPDATE SKIP LOCKED
            """
        )
        return Token.from_row(row) if row is not None else None

    async def claim_available(self) -> Optional[Token]:
        row = await self._connection.fetchrow(
            f"""
            SELECT {_TOKEN_COLUMNS} FROM tokens t
            WHERE t.state = 'available'
            ORDER BY t.released_at ASC NULLS FIRST, t.id ASC
            LIMIT 1
            FOR UPDATE SKIP LOCKED
            """
        )
        return Token.from_row(row) if row is not None else None

    async def lock_active(self) -> list[UUID]:
        rows = await self._connection.fetch(
            "SELECT id FROM tokens WHERE state = 'active' ORDER BY activated_at ASC, id ASC FOR UPDATE"
        )
        return [row["id"] for row in rows]

    async def lock_expired(self, cutoff: datetime) -> list[UUID]:
        rows = await self._connection.fetch(
            """
            SELECT id FROM tokens
            WHERE state = 'active' AND activated_at < $1
            ORDER BY activated_at ASC, id ASC
            FOR UPDATE SKIP LOCKED
            """,
            cutoff,
        )
        return [row["id"] for row in rows]

    async def activate(self, token_id: UUID, holder: UUID, now: datetime) -> Token:
        row = await self._connection.fetchrow(
            """
            UPDATE tokens
            SET state = 'active', holder = $2, activated_at = $3, updated_at = NOW()
            WHERE id = $1
            RETURNING id, state, holder, activated_at, released_at
            """,
            token_id,
            holder,
            now,
        )
        if row is None:
            raise TokenNotFound(f"Token {token_id} does not exist")
        return Token.from_row(row)

    async def mark_available(self, token_ids: Sequence[UUID], now: datetime) -> int:
        if not token_ids:
            return 0
        status = await self._connection.execute(
            """
            UPDATE tokens
            SET state = 'available', holder = NULL, released_at = $2, updated_at = NOW()
            WHERE id = ANY($1::uuid[]) AND state = 'active'
            """,
            list(token_ids),
            now,
        )
        return _affected_rows(status)

    async def open_lease(self, token_id: UUID, holder: UUID, started_at: datetime) -> LeaseRecord:
        row = await self._connection.fetchrow(
            """
            INSERT INTO token_usages (id, token_id, holder, started_at)
            VALUES ($1, $2, $3, $4)
            RETURNING id, token_id, holder, started_at, ended_at
            """,
            uuid.uuid4(),
            token_id,
            holder,
            started_at,
        )
        return LeaseRecord.from_row(row)

    async def close_open_leases(self, token_ids: Sequence[UUID], ended_at: datetime) -> int:
        if not token_ids:
            return 0
        status = await self._connection.execute(
            """
            UPDATE token_usages SET ended_at = $2
            WHERE token_id = ANY($1::uuid[]) AND ended_at IS NULL
            """,
            list(token_ids),
            ended_at,
        )
        return _affected_rows(status)

    async def insert_tokens(self, token_ids: Iterable[UUID]) -> int:
        ids = list(token_ids)
        if not ids:
            return 0
        status = await self._connection.execute(
            """
            INSERT INTO tokens (id, state)
            SELECT unnest($1::uuid[]), 'available'
            ON CONFLICT (id) DO NOTHING
            """,
            ids,
        )
        return _affected_rows(status)


def _affected_rows(status: str) -> int:
    """Parse the row count from an asyncpg command status such as ``UPDATE 3``."""

    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class PostgresTokenStore(TokenStore):
    """Async wrapper around an asyncpg pool for the token tables."""

    def __init__(self, settings: TokenPoolSettings) -> None:
        self._settings = settings
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        LOGGER.debug("Connecting to Postgres at %s", self._settings.database_url)
        try:
            self._pool = await asyncpg.create_pool(
                self._settings.database_url,
                min_size=self._settings.database_pool_min_size,
                max_size=self._settings.database_pool_max_size,
            )
            async with self._pool.acquire() as connection:
                await connection.execute(_CREATE_SCHEMA_SQL)
        except _DRIVER_ERRORS as exc:
            if self._pool is not None:
                # Let the next connect() retry the schema.
                await self._pool.close()
                self._pool = None
            raise StorageFailure(f"Could not connect to Postgres: {exc}") from exc
        LOGGER.info("Postgres token store ready")

    async def close(self) -> None:
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        LOGGER.debug("Postgres connection pool closed")

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire() as connection:
                await connection.fetchval("SELECT 1")
        except _DRIVER_ERRORS as exc:
            LOGGER.warning("Postgres ping failed: %s", exc)
            return False
        return True

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgresTokenStore.connect() must be called before use")
        return self._pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresTransaction]:
        pool = self._require_pool()
        try:
            async with pool.acquire() as connection:
                async with connection.transaction():
                    yield PostgresTransaction(connection)
        except _DRIVER_ERRORS as exc:
            raise StorageFailure(str(exc)) from exc

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[PostgresReader]:
        pool = self._require_pool()
        try:
            async with pool.acquire() as connection:
                yield PostgresReader(connection)
        except _DRIVER_ERRORS as exc:
            raise StorageFailure(str(exc)) from exc


__all__ = ["ADMISSION_LOCK_KEY", "PostgresReader", "PostgresTokenStore", "PostgresTransaction"]
