import asyncio
import uuid

import pytest

from token_pool import InvalidHolder, NoAvailableTokens, StorageFailure, TokenState
from token_pool.storage.memory import MemoryTransaction


def test_register_activates_token_and_opens_lease(make_pool) -> None:
    async def scenario():
        pool = await make_pool()
        holder = uuid.uuid4()

        registration = await pool.register_usage(str(holder))

        token = await pool.get_token(registration.token_id)
        assert registration.holder == holder
        assert token.state is TokenState.ACTIVE
        assert token.holder == holder
        history = await pool.history(registration.token_id)
        assert len(history) == 1
        assert history[0].ended_at is None
        assert history[0].holder == holder
        assert await pool.count_active() == 1
        assert await pool.count_available() == 99

    asyncio.run(scenario())


def test_register_rejects_malformed_holder_without_mutation(make_pool, sink) -> None:
    async def scenario():
        pool = await make_pool()
        await pool.register_usage(str(uuid.uuid4()))

        with pytest.raises(InvalidHolder) as excinfo:
            await pool.register_usage("not-a-uuid")

        assert excinfo.value.code == "invalid_user_id"
        assert await pool.count_active() == 1
        _, metadata = sink.last("lease.failed")
        assert metadata["reason"] == "invalid_user_id"

    asyncio.run(scenario())


@pytest.mark.parametrize("holder", [None, 42, "", "1234"])
def test_register_rejects_non_uuid_values(make_pool, holder) -> None:
    async def scenario():
        pool = await make_pool(pool_size=3)
        with pytest.raises(InvalidHolder):
            await pool.register_usage(holder)
        assert await pool.count_active() == 0

    asyncio.run(scenario())


SAMPLE_ID = "6f1c2a9e-3b4d-4e5f-8a7b-9c0d1e2f3a4b"


@pytest.mark.parametrize(
    "holder",
    [
        "{" + SAMPLE_ID + "}",
        "urn:uuid:" + SAMPLE_ID,
        SAMPLE_ID.replace("-", ""),
        "  " + SAMPLE_ID + "\n",
        "\u0661" * 32,
        "\u0661" * 8 + SAMPLE_ID[8:],
    ],
)
def test_register_accepts_only_hyphenated_uuid_strings(make_pool, holder) -> None:
    async def scenario():
        pool = await make_pool(pool_size=3)
        with pytest.raises(InvalidHolder):
            await pool.register_usage(holder)
        assert await pool.count_active() == 0

        registration = await pool.register_usage(SAMPLE_ID.upper())
        assert str(registration.holder) == SAMPLE_ID

    asyncio.run(scenario())


def test_register_at_capacity_evicts_globally_oldest(make_pool, clock) -> None:
    async def scenario():
        pool = await make_pool(pool_size=101, max_active_tokens=100)
        registrations = []
        for _ in range(100):
            registrations.append(await pool.register_usage(str(uuid.uuid4())))
            clock.advance(1)
        oldest = registrations[0].token_id
        assert await pool.count_active() == 100
        assert await pool.count_available() == 1

        registration = await pool.register_usage(str(uuid.uuid4()))

        assert registration.evicted_token_id == oldest
        evicted = await pool.get_token(oldest)
        assert evicted.state is TokenState.AVAILABLE
        assert evicted.holder is None
        assert evicted.released_at == clock.now()
        assert await pool.count_active() == 100
        assert (await pool.history(oldest))[0].ended_at == clock.now()

    asyncio.run(scenario())


def test_eviction_breaks_activation_ties_by_token_id(make_pool) -> None:
    async def scenario():
        pool = await make_pool(pool_size=3, max_active_tokens=3)
        # Fixed clock: every lease starts at the same instant.
        for _ in range(3):
            await pool.register_usage(str(uuid.uuid4()))
        smallest_id = min(token.id for token in await pool.list_active())

        registration = await pool.register_usage(str(uuid.uuid4()))

        assert registration.evicted_token_id == smallest_id

    asyncio.run(scenario())


def test_capacity_is_never_exceeded(make_pool, clock) -> None:
    async def scenario():
        pool = await make_pool(pool_size=8, max_active_tokens=3)
        for _ in range(25):
            await pool.register_usage(str(uuid.uuid4()))
            clock.advance(2)
            assert await pool.count_active() <= 3
        assert await pool.count_active() == 3
        assert await pool.count_available() == 5

    asyncio.run(scenario())


def test_pool_smaller_than_cap_evicts_when_exhausted(make_pool, clock) -> None:
    async def scenario():
        pool = await make_pool(pool_size=2, max_active_tokens=100)
        first = await pool.register_usage(str(uuid.uuid4()))
        clock.advance(1)
        await pool.register_usage(str(uuid.uuid4()))
        clock.advance(1)

        third = await pool.register_usage(str(uuid.uuid4()))

        assert third.evicted_token_id == first.token_id
        assert await pool.count_active() == 2

    asyncio.run(scenario())


def test_register_without_tokens_raises_no_available_tokens(make_pool, sink) -> None:
    async def scenario():
        pool = await make_pool(provisioned=0)

        with pytest.raises(NoAvailableTokens):
            await pool.register_usage(str(uuid.uuid4()))

        _, metadata = sink.last("lease.failed")
        assert metadata["reason"] == "no_available_tokens"
        assert await pool.queries.count_all() == 0

    asyncio.run(scenario())


def test_failed_registration_rolls_back_eviction(make_pool, clock, monkeypatch) -> None:
    async def scenario():
        pool = await make_pool(pool_size=2, max_active_tokens=2)
        first = await pool.register_usage(str(uuid.uuid4()))
        clock.advance(1)
        await pool.register_usage(str(uuid.uuid4()))
        clock.advance(1)

        async def broken_open_lease(self, token_id, holder, started_at):
            raise StorageFailure("disk full")

        monkeypatch.setattr(MemoryTransaction, "open_lease", broken_open_lease)
        with pytest.raises(StorageFailure):
            await pool.register_usage(str(uuid.uuid4()))

        survivor = await pool.get_token(first.token_id)
        assert survivor.state is TokenState.ACTIVE
        assert survivor.released_at is None
        assert (await pool.history(first.token_id))[0].ended_at is None
        assert await pool.count_active() == 2

    asyncio.run(scenario())


def test_successful_registration_emits_acquired_event(make_pool, sink) -> None:
    async def scenario():
        pool = await make_pool(pool_size=1)
        registration = await pool.register_usage(str(uuid.uuid4()))

        measurements, metadata = sink.last("lease.acquired")
        assert metadata["token_id"] == registration.token_id
        assert "evicted_token_id" not in metadata
        assert measurements["duration_ms"] >= 0

    asyncio.run(scenario())


def test_same_holder_may_hold_several_tokens(make_pool, clock) -> None:
    async def scenario():
        pool = await make_pool(pool_size=5)
        holder = str(uuid.uuid4())
        await pool.register_usage(holder)
        clock.advance(1)
        second = await pool.register_usage(holder)

        assert await pool.count_active() == 2
        latest = await pool.get_token_by_holder(holder)
        assert latest.id == second.token_id

    asyncio.run(scenario())
