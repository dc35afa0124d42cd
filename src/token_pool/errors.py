"""Error taxonomy for token pool operations.

Every error carries a stable ``code`` so callers (the HTTP layer, CLI tools)
can tell them apart without matching on messages.
"""

from __future__ import annotations


class TokenPoolError(Exception):
    """Base class for all token pool errors."""

    code = "token_pool_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)


class InvalidHolder(TokenPoolError):
    """The holder identifier is not a well-formed UUID."""

    code = "invalid_user_id"


class InvalidTokenId(TokenPoolError):
    """The token identifier is not a well-formed UUID."""

    code = "invalid_token_id"


class InvalidStateFilter(TokenPoolError):
    code = "invalid_state_filter"


class TokenNotFound(TokenPoolError):
    code = "token_not_found"


class NoActiveTokenForHolder(TokenPoolError):
    code = "no_active_token_for_user"


class NoActiveTokens(TokenPoolError):
    code = "no_active_tokens"


class NoAvailableTokens(TokenPoolError):
    """No token could be claimed even after eviction.

    Raised rather than retried: it means another transaction consumed the
    freed capacity or the pool was never provisioned.
    """

    code = "no_available_tokens"


class StorageFailure(TokenPoolError):
    """The storage backend failed; the transaction was rolled back."""

    code = "storage_failure"


__all__ = [
    "InvalidHolder",
    "InvalidStateFilter",
    "InvalidTokenId",
    "NoActiveTokenForHolder",
    "NoActiveTokens",
    "NoAvailableTokens",
    "StorageFailure",
    "TokenNotFound",
    "TokenPoolError",
]
