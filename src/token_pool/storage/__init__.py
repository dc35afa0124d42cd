"""Storage backends for the token pool."""

from __future__ import annotations

from ..config import TokenPoolSettings
from .base import StoreTransaction, TokenReader, TokenStore
from .memory import MemoryTokenStore


def create_store(settings: TokenPoolSettings) -> TokenStore:
    """Build the store selected by ``settings.storage_backend``."""

    if settings.storage_backend == "memory":
        return MemoryTokenStore()
    from .postgres import PostgresTokenStore

    return PostgresTokenStore(settings)


__all__ = ["MemoryTokenStore", "StoreTransaction", "TokenReader", "TokenStore", "create_store"]
