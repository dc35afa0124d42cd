"""FastAPI dependencies."""

from fastapi import Request

from token_pool import ExpirationReaper, TokenPool


def get_pool(request: Request) -> TokenPool:
    return request.app.state.pool


def get_reaper(request: Request) -> ExpirationReaper:
    return request.app.state.reaper
