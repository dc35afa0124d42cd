"""Provision the token pool.

USAGE:
    python -m cli.seed_tokens            # top the pool up to POOL_SIZE
    python -m cli.seed_tokens --count 10 # insert 10 more tokens regardless
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from token_pool import StorageFailure, create_store, ensure_provisioned, get_settings, provision_tokens

from .common import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the tokens handed out by the pool")
    parser.add_argument("--count", type=int, default=None, help="Insert exactly this many new tokens")
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    return parser.parse_args(argv)


async def seed(count: Optional[int] = None) -> int:
    settings = get_settings()
    store = create_store(settings)
    await store.connect()
    try:
        if count is not None:
            return await provision_tokens(store, count)
        return await ensure_provisioned(store, settings.pool_size)
    finally:
        await store.close()


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level or get_settings().log_level)
    try:
        created = asyncio.run(seed(args.count))
    except StorageFailure as exc:
        logger.error("Provisioning failed: %s", exc)
        return 1
    print(f"✓ Created {created} token(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
