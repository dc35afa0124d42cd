"""Run one expiration sweep on demand and report how many leases were released."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from token_pool import LoggingEventSink, StorageFailure, TokenPool, create_store, get_settings

from .common import setup_logging

logger = logging.getLogger(__name__)


async def sweep() -> int:
    settings = get_settings()
    store = create_store(settings)
    await store.connect()
    try:
        pool = TokenPool(store, settings, sink=LoggingEventSink())
        return await pool.create_reaper().check_now()
    finally:
        await store.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Release leases older than the configured lifetime")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        released = asyncio.run(sweep())
    except StorageFailure as exc:
        logger.error("Sweep failed: %s", exc)
        return 1
    print(f"Released {released} expired token(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
