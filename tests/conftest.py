"""Shared fixtures: a controllable clock, a recording event sink and pool builders."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Mapping

import pytest

from token_pool import EventSink, MemoryTokenStore, TokenPool, TokenPoolSettings, provision_tokens

START = datetime(2025, 1, 6, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self._now = start

    def __call__(self) -> datetime:
        return self._now

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now


class RecordingSink(EventSink):
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any], dict[str, Any]]] = []

    def emit(self, name: str, measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> None:
        self.events.append((name, dict(measurements), dict(metadata)))

    def names(self) -> list[str]:
        return [name for name, _, _ in self.events]

    def last(self, name: str) -> tuple[dict[str, Any], dict[str, Any]]:
        for event_name, measurements, metadata in reversed(self.events):
            if event_name == name:
                return measurements, metadata
        raise AssertionError(f"no {name} event recorded")


def make_settings(**overrides: Any) -> TokenPoolSettings:
    values: dict[str, Any] = {
        "storage_backend": "memory",
        "environment": "test",
        "pool_size": 100,
        "max_active_tokens": 100,
        "token_lifetime_seconds": 60,
        "check_interval_seconds": 30,
    }
    values.update(overrides)
    return TokenPoolSettings(_env_file=None, **values)


def new_holder() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_pool(clock: FakeClock, sink: RecordingSink) -> Callable[..., Awaitable[TokenPool]]:
    """Return a coroutine that builds a provisioned in-memory pool."""

    async def build(pool_size: int = 100, *, provisioned: int | None = None, **overrides: Any) -> TokenPool:
        settings = make_settings(pool_size=pool_size, **overrides)
        store = MemoryTokenStore()
        await store.connect()
        await provision_tokens(store, pool_size if provisioned is None else provisioned)
        return TokenPool(store, settings, clock=clock, sink=sink)

    return build


@pytest.fixture
def settings_factory() -> Callable[..., TokenPoolSettings]:
    return make_settings
