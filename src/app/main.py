"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from token_pool import (
    EventSink,
    LoggingEventSink,
    MemoryTokenStore,
    TokenPool,
    TokenPoolError,
    TokenPoolSettings,
    TokenStore,
    create_store,
    ensure_provisioned,
    get_settings,
)

from .api.router import router as api_router
from .errors import token_pool_error_handler
from .rate_limit import ClientRateLimiter

LOGGER = logging.getLogger(__name__)

_RATE_LIMIT_EXEMPT = frozenset({"/health"})


def create_app(
    settings: Optional[TokenPoolSettings] = None,
    *,
    store: Optional[TokenStore] = None,
    clock: Optional[Callable[[], datetime]] = None,
    sink: Optional[EventSink] = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance."""

    settings = settings or get_settings()
    store = store or create_store(settings)
    pool = TokenPool(store, settings, clock=clock, sink=sink or LoggingEventSink())
    reaper = pool.create_reaper()
    limiter = ClientRateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await store.connect()
        if isinstance(store, MemoryTokenStore):
            await ensure_provisioned(store, settings.pool_size)
        if settings.enable_reaper:
            await reaper.start()
        LOGGER.info("%s ready (%s backend)", settings.app_name, settings.storage_backend)
        try:
            yield
        finally:
            await reaper.stop()
            await store.close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.pool = pool
    app.state.reaper = reaper
    app.state.rate_limiter = limiter
    app.add_exception_handler(TokenPoolError, token_pool_error_handler)

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if request.url.path in _RATE_LIMIT_EXEMPT:
            return await call_next(request)
        client = _client_key(request)
        allowed, retry_after = await limiter.check(client)
        if not allowed:
            LOGGER.warning("Rate limit exceeded for %s (limit %d)", client, limiter.limit)
            return JSONResponse(
                status_code=429,
                content={
                    "status": "too_many_requests",
                    "reason": "rate_limit_exceeded",
                    "message": "Too many requests. Please try again later.",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )
        return await call_next(request)

    @app.get("/", tags=["system"])
    async def root() -> dict[str, str]:
        """Return basic application metadata."""

        return {"message": f"{settings.app_name} ready", "environment": settings.environment}

    app.include_router(api_router)
    return app


def _client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


__all__ = ["create_app"]
