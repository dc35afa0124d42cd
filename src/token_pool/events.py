"""Lifecycle events emitted by the token pool."""

from __future__ import annotations

import abc
import logging
import time
from typing import Any, Mapping

LOGGER = logging.getLogger(__name__)

LEASE_ACQUIRED = "lease.acquired"
LEASE_FAILED = "lease.failed"
LEASE_RELEASED = "lease.released"
LEASE_RELEASE_FAILED = "lease.release_failed"
LEASES_CLEARED = "leases.cleared"
SWEEP_COMPLETED = "sweep.completed"
SWEEP_FAILED = "sweep.failed"

_FAILURE_EVENTS = frozenset({LEASE_FAILED, LEASE_RELEASE_FAILED, SWEEP_FAILED})


class EventSink(abc.ABC):
    """Receives discrete events from the core operations."""

    @abc.abstractmethod
    def emit(self, name: str, measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> None:
        """Record a single event."""


class NullEventSink(EventSink):
    def emit(self, name: str, measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> None:
        return None


class LoggingEventSink(EventSink):
    """Write one log line per event; failures are logged as warnings."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("token_pool.events")

    def emit(self, name: str, measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> None:
        level = logging.WARNING if name in _FAILURE_EVENTS else logging.INFO
        fields = " ".join(f"{key}={value}" for key, value in {**measurements, **metadata}.items())
        self._logger.log(level, "event=%s %s", name, fields)


def elapsed_ms(started: float) -> float:
    """Milliseconds since a ``time.monotonic()`` reading."""

    return round((time.monotonic() - started) * 1000, 3)


def emit_safely(
    sink: EventSink,
    name: str,
    measurements: Mapping[str, Any] | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> None:
    """Deliver an event without letting a broken sink fail the caller."""

    try:
        sink.emit(name, dict(measurements or {}), dict(metadata or {}))
    except Exception:
        LOGGER.exception("Event sink %r failed for %s", sink, name)


__all__ = [
    "EventSink",
    "LEASES_CLEARED",
    "LEASE_ACQUIRED",
    "LEASE_FAILED",
    "LEASE_RELEASED",
    "LEASE_RELEASE_FAILED",
    "LoggingEventSink",
    "NullEventSink",
    "SWEEP_COMPLETED",
    "SWEEP_FAILED",
    "elapsed_ms",
    "emit_safely",
]
