"""Creating the fixed set of tokens the pool hands out."""

from __future__ import annotations

import logging
import uuid

from .storage import TokenStore

LOGGER = logging.getLogger(__name__)


async def provision_tokens(store: TokenStore, count: int = 100) -> int:
    """Insert ``count`` new available tokens in one transaction."""

    if count < 0:
        raise ValueError("count must not be negative")
    if count == 0:
        return 0
    async with store.transaction() as transaction:
        inserted = await transaction.insert_tokens(uuid.uuid4() for _ in range(count))
    LOGGER.info("Provisioned %d token(s)", inserted)
    return inserted


async def ensure_provisioned(store: TokenStore, pool_size: int = 100) -> int:
    """Top the pool up to ``pool_size`` tokens; returns how many were created."""

    async with store.reader() as reader:
        existing = await reader.count_tokens()
    shortfall = pool_size - existing
    if shortfall <= 0:
        LOGGER.debug("Pool already holds %d token(s); nothing to provision", existing)
        return 0
    return await provision_tokens(store, shortfall)


__all__ = ["ensure_provisioned", "provision_tokens"]
