import asyncio
import uuid
from datetime import datetime, timezone

import pytest

from token_pool import MemoryTokenStore, StorageFailure, TokenState, provision_tokens

START = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def test_transaction_writes_are_invisible_until_commit() -> None:
    async def scenario():
        store = MemoryTokenStore()
        await provision_tokens(store, 2)
        holder = uuid.uuid4()

        async with store.transaction() as transaction:
            token = await transaction.claim_available()
            await transaction.activate(token.id, holder, START)
            async with store.reader() as reader:
                assert await reader.count_tokens(TokenState.ACTIVE) == 0
            assert await transaction.count_tokens(TokenState.ACTIVE) == 1

        async with store.reader() as reader:
            assert (await reader.get_active_by_holder(holder)).id == token.id

    asyncio.run(scenario())


def test_failed_transaction_discards_writes() -> None:
    async def scenario():
        store = MemoryTokenStore()
        await provision_tokens(store, 1)

        with pytest.raises(StorageFailure):
            async with store.transaction() as transaction:
                token = await transaction.claim_available()
                await transaction.activate(token.id, uuid.uuid4(), START)
                await transaction.open_lease(token.id, uuid.uuid4(), START)
                raise StorageFailure("connection lost")

        async with store.reader() as reader:
            assert await reader.count_tokens(TokenState.AVAILABLE) == 1
            assert await reader.lease_history(token.id) == []

    asyncio.run(scenario())


def test_mark_available_skips_tokens_that_are_not_active() -> None:
    async def scenario():
        store = MemoryTokenStore()
        await provision_tokens(store, 2)
        async with store.reader() as reader:
            first, second = await reader.list_tokens()

        async with store.transaction() as transaction:
            await transaction.activate(first.id, uuid.uuid4(), START)
            changed = await transaction.mark_available([first.id, second.id, uuid.uuid4()], START)

        assert changed == 1

    asyncio.run(scenario())


def test_insert_tokens_ignores_existing_ids() -> None:
    async def scenario():
        store = MemoryTokenStore()
        token_id = uuid.uuid4()
        async with store.transaction() as transaction:
            assert await transaction.insert_tokens([token_id, token_id]) == 1
        async with store.transaction() as transaction:
            assert await transaction.insert_tokens([token_id]) == 0
        assert await store.ping()

    asyncio.run(scenario())
