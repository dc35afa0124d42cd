"""Data models for tokens and their lease history."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

_CANONICAL_UUID = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")


class TokenState(str, Enum):
    AVAILABLE = "available"
    ACTIVE = "active"


class TokenFilter(str, Enum):
    """State filter accepted by the token listing."""

    ALL = "all"
    AVAILABLE = "available"
    ACTIVE = "active"


class Token(BaseModel):
    """A reusable lease slot with a persistent identity.

    ``holder`` and ``activated_at`` are set exactly when the token is active.
    ``usage_count`` is only populated when a listing asks for it.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID
    state: TokenState = TokenState.AVAILABLE
    holder: Optional[UUID] = None
    activated_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    usage_count: Optional[int] = Field(default=None, ge=0)

    @property
    def is_active(self) -> bool:
        return self.state is TokenState.ACTIVE

    def activated(self, holder: UUID, now: datetime) -> "Token":
        """Return a copy of this token leased to ``holder``."""

        return self.model_copy(update={"state": TokenState.ACTIVE, "holder": holder, "activated_at": now})

    def released(self, now: datetime) -> "Token":
        """Return a copy of this token put back into the pool.

        ``activated_at`` is kept so the last lease start stays visible.
        """

        return self.model_copy(update={"state": TokenState.AVAILABLE, "holder": None, "released_at": now})

    @classmethod
    def from_row(cls, row: Any) -> "Token":
        """Build a token from a mapping-like database row."""

        return cls(
            id=row["id"],
            state=TokenState(row["state"]),
            holder=row["holder"],
            activated_at=row["activated_at"],
            released_at=row["released_at"],
            usage_count=row.get("usage_count"),
        )


class LeaseRecord(BaseModel):
    """One interval during which a token was held."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    token_id: UUID
    holder: UUID
    started_at: datetime
    ended_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def closed(self, now: datetime) -> "LeaseRecord":
        return self.model_copy(update={"ended_at": now})

    @classmethod
    def from_row(cls, row: Any) -> "LeaseRecord":
        return cls(
            id=row["id"],
            token_id=row["token_id"],
            holder=row["holder"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
        )


class Registration(BaseModel):
    """Result of a successful lease acquisition."""

    model_config = ConfigDict(frozen=True)

    token_id: UUID
    holder: UUID
    evicted_token_id: Optional[UUID] = None


def parse_uuid(value: Any) -> Optional[UUID]:
    """Return ``value`` as a UUID, or ``None`` unless it is the hyphenated 36-character form."""

    if isinstance(value, UUID):
        return value
    if not isinstance(value, str) or _CANONICAL_UUID.fullmatch(value) is None:
        return None
    return UUID(value)


def utc_now() -> datetime:
    """Timezone-aware current time, the default clock for the pool."""

    return datetime.now(timezone.utc)


__all__ = [
    "LeaseRecord",
    "Registration",
    "Token",
    "TokenFilter",
    "TokenState",
    "parse_uuid",
    "utc_now",
]
