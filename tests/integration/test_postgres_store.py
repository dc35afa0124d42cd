"""Round trips against a real Postgres; set TEST_DATABASE_URL to run them."""

import asyncio
import os
import uuid
from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest

pytest.importorskip("asyncpg")

from token_pool import StorageFailure, TokenPool, TokenState, provision_tokens  # noqa: E402
from token_pool.storage import postgres  # noqa: E402
from token_pool.storage.postgres import PostgresTokenStore, _affected_rows  # noqa: E402

DATABASE_URL = os.getenv("TEST_DATABASE_URL")

requires_database = pytest.mark.skipif(not DATABASE_URL, reason="TEST_DATABASE_URL not set")


def test_affected_rows_parses_command_status() -> None:
    assert _affected_rows("UPDATE 3") == 3
    assert _affected_rows("INSERT 0 7") == 7
    assert _affected_rows("") == 0


class BrokenSchemaPool:
    def __init__(self) -> None:
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        async def execute(*args):
            raise OSError("connection reset during schema setup")

        yield SimpleNamespace(execute=execute)

    async def close(self) -> None:
        self.closed = True


def test_connect_discards_pool_when_schema_setup_fails(settings_factory, monkeypatch) -> None:
    pools = []

    async def create_pool(*args, **kwargs):
        pools.append(BrokenSchemaPool())
        return pools[-1]

    monkeypatch.setattr(postgres.asyncpg, "create_pool", create_pool)
    store = PostgresTokenStore(settings_factory(storage_backend="postgres"))

    async def scenario():
        for _ in range(2):
            with pytest.raises(StorageFailure):
                await store.connect()
        assert await store.ping() is False

    asyncio.run(scenario())

    assert len(pools) == 2
    assert all(pool.closed for pool in pools)


async def _fresh_pool(settings_factory, clock, sink, **overrides) -> TokenPool:
    settings = settings_factory(storage_backend="postgres", database_url=DATABASE_URL, **overrides)
    store = PostgresTokenStore(settings)
    await store.connect()
    async with store.transaction() as transaction:
        await transaction._connection.execute("TRUNCATE token_usages, tokens")
    await provision_tokens(store, settings.pool_size)
    return TokenPool(store, settings, clock=clock, sink=sink)


@requires_database
def test_register_evict_and_history(settings_factory, clock, sink) -> None:
    async def scenario():
        pool = await _fresh_pool(settings_factory, clock, sink, pool_size=3, max_active_tokens=2)
        try:
            first = await pool.register_usage(str(uuid.uuid4()))
            clock.advance(1)
            await pool.register_usage(str(uuid.uuid4()))
            clock.advance(1)

            third = await pool.register_usage(str(uuid.uuid4()))

            assert third.evicted_token_id == first.token_id
            assert await pool.count_active() == 2
            evicted = await pool.get_token(first.token_id, with_usage_count=True)
            assert evicted.state is TokenState.AVAILABLE
            assert evicted.usage_count == 1
            history = await pool.history(first.token_id)
            assert history[0].ended_at == clock.now()
        finally:
            await pool.store.close()

    asyncio.run(scenario())


@requires_database
def test_concurrent_registrations_do_not_share_tokens(settings_factory, clock, sink) -> None:
    async def scenario():
        pool = await _fresh_pool(settings_factory, clock, sink, pool_size=10)
        try:
            registrations = await asyncio.gather(*(pool.register_usage(str(uuid.uuid4())) for _ in range(10)))
            assert len({registration.token_id for registration in registrations}) == 10
            assert await pool.count_active() == 10
        finally:
            await pool.store.close()

    asyncio.run(scenario())


@requires_database
def test_expiry_and_clear(settings_factory, clock, sink) -> None:
    async def scenario():
        pool = await _fresh_pool(settings_factory, clock, sink, pool_size=4, token_lifetime_seconds=60)
        try:
            await pool.register_usage(str(uuid.uuid4()))
            clock.advance(65)
            await pool.register_usage(str(uuid.uuid4()))

            assert await pool.release_expired() == 1
            assert await pool.clear_all_active() == 1
            assert await pool.count_available() == 4
        finally:
            await pool.store.close()

    asyncio.run(scenario())
