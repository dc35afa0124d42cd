"""API router definitions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from token_pool import ExpirationReaper, TokenPool

from ..dependencies import get_pool, get_reaper
from .tokens import router as tokens_router

LOGGER = logging.getLogger(__name__)

router = APIRouter()
router.include_router(tokens_router)


@router.get("/health", tags=["system"])
async def healthcheck(
    pool: TokenPool = Depends(get_pool),
    reaper: ExpirationReaper = Depends(get_reaper),
) -> JSONResponse:
    """Report database connectivity, reaper status and pool counts.

    Returns 200 when every check passes and 503 otherwise.
    """

    checks: dict[str, dict[str, Any]] = {
        "database": await _check_database(pool),
        "token_manager": _check_reaper(reaper),
        "metrics": await _pool_metrics(pool),
    }
    healthy = all(check["status"] == "ok" for check in checks.values())
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
    code = status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=body)


async def _check_database(pool: TokenPool) -> dict[str, Any]:
    if await pool.store.ping():
        return {"status": "ok", "details": "connected"}
    return {"status": "error", "details": "disconnected"}


def _check_reaper(reaper: ExpirationReaper) -> dict[str, Any]:
    if reaper.is_running:
        return {"status": "ok", "details": "running", "last_result": reaper.last_result}
    return {"status": "error", "details": "not_running"}


async def _pool_metrics(pool: TokenPool) -> dict[str, Any]:
    try:
        active = await pool.count_active()
        available = await pool.count_available()
    except Exception as exc:
        LOGGER.warning("Health metrics unavailable: %s", exc)
        return {"status": "error", "details": f"failed: {exc}"}
    return {
        "status": "ok",
        "details": {
            "active_tokens": active,
            "available_tokens": available,
            "total_tokens": active + available,
        },
    }
