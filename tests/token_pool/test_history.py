import asyncio
import uuid

from token_pool.storage.memory import MemoryTokenStore


def test_history_records_each_lease_newest_first(make_pool, clock) -> None:
    async def scenario():
        pool = await make_pool(pool_size=1)
        holders = [uuid.uuid4() for _ in range(3)]
        starts = []
        for holder in holders:
            starts.append(clock.now())
            await pool.register_usage(str(holder))
            clock.advance(10)
        token_id = (await pool.list_tokens())[0].id

        history = await pool.history(token_id)

        assert [record.holder for record in history] == list(reversed(holders))
        assert [record.started_at for record in history] == list(reversed(starts))
        assert history[0].is_open
        # Each eviction closed the previous interval at the moment of the next lease.
        assert [record.ended_at for record in history[1:]] == [starts[2], starts[1]]

    asyncio.run(scenario())


def test_history_of_unused_or_unknown_token_is_empty(make_pool) -> None:
    async def scenario():
        pool = await make_pool(pool_size=2)
        token_id = (await pool.list_tokens())[0].id

        assert await pool.history(token_id) == []
        assert await pool.history(uuid.uuid4()) == []
        assert await pool.history("bogus") == []

    asyncio.run(scenario())


def test_same_instant_leases_keep_insertion_order(make_pool) -> None:
    async def scenario():
        pool = await make_pool(pool_size=1)
        first, second = uuid.uuid4(), uuid.uuid4()
        await pool.register_usage(first)
        await pool.register_usage(second)
        token_id = (await pool.list_tokens())[0].id

        history = await pool.history(token_id)

        assert [record.holder for record in history] == [second, first]

    asyncio.run(scenario())


def test_closing_without_open_lease_is_a_no_op(make_pool, clock) -> None:
    async def scenario():
        pool = await make_pool(pool_size=2)
        store: MemoryTokenStore = pool.store
        token_id = (await pool.list_tokens())[0].id

        async with store.transaction() as transaction:
            closed = await pool.lease_history.close_open_lease(transaction, token_id, clock.now())

        assert closed == 0
        assert await pool.history(token_id) == []

    asyncio.run(scenario())
