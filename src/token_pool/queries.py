"""Read-only accessors over the token pool."""

from __future__ import annotations

from typing import Any, Optional

from .errors import InvalidStateFilter
from .models import Token, TokenFilter, TokenState, parse_uuid
from .storage import TokenStore

_FILTER_STATES: dict[TokenFilter, Optional[TokenState]] = {
    TokenFilter.ALL: None,
    TokenFilter.AVAILABLE: TokenState.AVAILABLE,
    TokenFilter.ACTIVE: TokenState.ACTIVE,
}


def coerce_filter(value: TokenFilter | str) -> TokenFilter:
    """Parse a state filter such as ``"active"``; unknown values raise ``InvalidStateFilter``."""

    if isinstance(value, TokenFilter):
        return value
    try:
        return TokenFilter(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidStateFilter(f"Unknown state filter: {value!r}") from exc


class TokenQueries:
    """Snapshot reads; malformed identifiers behave like misses."""

    def __init__(self, store: TokenStore) -> None:
        self._store = store

    async def list_tokens(
        self,
        state_filter: TokenFilter | str = TokenFilter.ALL,
        *,
        with_usage_count: bool = False,
    ) -> list[Token]:
        """List tokens, by id for ``all``/``available`` and oldest lease first for ``active``."""

        state = _FILTER_STATES[coerce_filter(state_filter)]
        async with self._store.reader() as reader:
            return await reader.list_tokens(state, with_usage_count=with_usage_count)

    async def list_available(self) -> list[Token]:
        return await self.list_tokens(TokenFilter.AVAILABLE)

    async def list_active(self, *, with_usage_count: bool = False) -> list[Token]:
        return await self.list_tokens(TokenFilter.ACTIVE, with_usage_count=with_usage_count)

    async def get_token(self, token_id: Any, *, with_usage_count: bool = False) -> Optional[Token]:
        parsed = parse_uuid(token_id)
        if parsed is None:
            return None
        async with self._store.reader() as reader:
            return await reader.get_token(parsed, with_usage_count=with_usage_count)

    async def get_token_by_holder(self, holder: Any) -> Optional[Token]:
        """Return the holder's active token.

        A holder may end up with more than one active token; the most
        recently activated one is returned.
        """

        parsed = parse_uuid(holder)
        if parsed is None:
            return None
        async with self._store.reader() as reader:
            return await reader.get_active_by_holder(parsed)

    async def count_active(self) -> int:
        async with self._store.reader() as reader:
            return await reader.count_tokens(TokenState.ACTIVE)

    async def count_available(self) -> int:
        async with self._store.reader() as reader:
            return await reader.count_tokens(TokenState.AVAILABLE)

    async def count_all(self) -> int:
        async with self._store.reader() as reader:
            return await reader.count_tokens()


__all__ = ["TokenQueries", "coerce_filter"]
