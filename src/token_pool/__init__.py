"""Fixed-size pool of reusable lease tokens."""

from .config import TokenPoolSettings, get_settings
from .errors import (
    InvalidHolder,
    InvalidStateFilter,
    InvalidTokenId,
    NoActiveTokenForHolder,
    NoActiveTokens,
    NoAvailableTokens,
    StorageFailure,
    TokenNotFound,
    TokenPoolError,
)
from .events import EventSink, LoggingEventSink, NullEventSink
from .models import LeaseRecord, Registration, Token, TokenFilter, TokenState
from .provisioning import ensure_provisioned, provision_tokens
from .reaper import ExpirationReaper, ReaperState
from .service import TokenPool
from .storage import MemoryTokenStore, TokenStore, create_store

__all__ = [
    "EventSink",
    "ExpirationReaper",
    "InvalidHolder",
    "InvalidStateFilter",
    "InvalidTokenId",
    "LeaseRecord",
    "LoggingEventSink",
    "MemoryTokenStore",
    "NoActiveTokenForHolder",
    "NoActiveTokens",
    "NoAvailableTokens",
    "NullEventSink",
    "ReaperState",
    "Registration",
    "StorageFailure",
    "Token",
    "TokenFilter",
    "TokenNotFound",
    "TokenPool",
    "TokenPoolError",
    "TokenPoolSettings",
    "TokenState",
    "TokenStore",
    "create_store",
    "ensure_provisioned",
    "get_settings",
    "provision_tokens",
]
