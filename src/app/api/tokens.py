"""Token management endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from token_pool import TokenNotFound, TokenPool

from ..dependencies import get_pool
from ..errors import MISSING_USER_ID, error_response
from ..schemas import (
    ActivateRequest,
    ActivateResponse,
    ClearActiveResponse,
    TokenDetail,
    TokenList,
    TokenView,
    UsageList,
    UsageView,
)

router = APIRouter(prefix="/api/tokens", tags=["tokens"])


@router.post("/activate", response_model=ActivateResponse)
async def activate(payload: Optional[ActivateRequest] = None, pool: TokenPool = Depends(get_pool)):
    """Lease a token to the caller identified by ``user_id``."""

    if payload is None or payload.user_id is None:
        return error_response(MISSING_USER_ID)
    registration = await pool.register_usage(payload.user_id)
    return ActivateResponse(token_id=registration.token_id, user_id=registration.holder)


@router.get("", response_model=TokenList)
async def list_tokens(state: str = Query(default="all"), pool: TokenPool = Depends(get_pool)) -> TokenList:
    """List tokens, optionally filtered by ``state`` (all, available, active)."""

    tokens = await pool.list_tokens(state)
    return TokenList(tokens=[TokenView.from_token(token) for token in tokens])


@router.delete("/active", response_model=ClearActiveResponse)
async def clear_active(pool: TokenPool = Depends(get_pool)) -> ClearActiveResponse:
    """Release every active token."""

    cleared = await pool.clear_all_active()
    return ClearActiveResponse(cleared_count=cleared)


@router.get("/{token_id}", response_model=TokenDetail)
async def show(token_id: str, pool: TokenPool = Depends(get_pool)) -> TokenDetail:
    """Return one token with the number of times it has been leased."""

    token = await pool.get_token(token_id, with_usage_count=True)
    if token is None:
        raise TokenNotFound(f"Token {token_id} not found")
    return TokenDetail.from_token(token)


@router.get("/{token_id}/usages", response_model=UsageList)
async def usages(token_id: str, pool: TokenPool = Depends(get_pool)) -> UsageList:
    """Return the lease history of a token, most recent first."""

    token = await pool.get_token(token_id)
    if token is None:
        raise TokenNotFound(f"Token {token_id} not found")
    records = await pool.history(token.id)
    return UsageList(token_id=token.id, usages=[UsageView.from_record(record) for record in records])
