import asyncio
import logging
import uuid

from token_pool import LoggingEventSink
from token_pool.events import EventSink, emit_safely


class ExplodingSink(EventSink):
    def emit(self, name, measurements, metadata):
        raise RuntimeError("sink offline")


def test_logging_sink_levels(caplog) -> None:
    sink = LoggingEventSink()
    with caplog.at_level(logging.INFO, logger="token_pool.events"):
        sink.emit("lease.acquired", {"duration_ms": 1.5}, {"token_id": "t-1"})
        sink.emit("lease.failed", {}, {"reason": "no_available_tokens"})

    first, second = caplog.records
    assert first.levelno == logging.INFO
    assert "event=lease.acquired" in first.getMessage()
    assert "token_id=t-1" in first.getMessage()
    assert second.levelno == logging.WARNING


def test_emit_safely_swallows_sink_errors(caplog) -> None:
    with caplog.at_level(logging.ERROR, logger="token_pool.events"):
        emit_safely(ExplodingSink(), "lease.released", {"duration_ms": 1}, None)
    assert "lease.released" in caplog.text


def test_broken_sink_does_not_fail_registration(make_pool) -> None:
    async def scenario():
        pool = await make_pool(pool_size=1)
        pool.registrations._sink = ExplodingSink()

        registration = await pool.register_usage(str(uuid.uuid4()))

        assert (await pool.get_token(registration.token_id)).is_active

    asyncio.run(scenario())
