"""Request and response bodies for the token API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from token_pool.models import LeaseRecord, Token


class ActivateRequest(BaseModel):
    user_id: Optional[Any] = Field(default=None, description="UUID of the caller requesting a token")


class ActivateResponse(BaseModel):
    token_id: UUID
    user_id: UUID


class TokenView(BaseModel):
    token_id: UUID
    state: str
    current_user_id: Optional[UUID] = None
    activated_at: Optional[datetime] = None
    released_at: Optional[datetime] = None

    @classmethod
    def from_token(cls, token: Token) -> "TokenView":
        return cls(
            token_id=token.id,
            state=token.state.value,
            current_user_id=token.holder,
            activated_at=token.activated_at,
            released_at=token.released_at,
        )


class TokenDetail(TokenView):
    usage_count: int = 0

    @classmethod
    def from_token(cls, token: Token) -> "TokenDetail":
        view = TokenView.from_token(token)
        return cls(**view.model_dump(), usage_count=token.usage_count or 0)


class TokenList(BaseModel):
    tokens: list[TokenView]


class UsageView(BaseModel):
    user_id: UUID
    started_at: datetime
    ended_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: LeaseRecord) -> "UsageView":
        return cls(user_id=record.holder, started_at=record.started_at, ended_at=record.ended_at)


class UsageList(BaseModel):
    token_id: UUID
    usages: list[UsageView]


class ClearActiveResponse(BaseModel):
    cleared_count: int
    status: str = "ok"


class ErrorResponse(BaseModel):
    status: str
    reason: str
    message: str


__all__ = [
    "ActivateRequest",
    "ActivateResponse",
    "ClearActiveResponse",
    "ErrorResponse",
    "TokenDetail",
    "TokenList",
    "TokenView",
    "UsageList",
    "UsageView",
]
