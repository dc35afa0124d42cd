"""Mapping of token pool errors onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from token_pool.errors import TokenPoolError

LOGGER = logging.getLogger(__name__)

MISSING_USER_ID = "missing_user_id"

_STATUS_BY_CODE: dict[str, int] = {
    "invalid_user_id": status.HTTP_400_BAD_REQUEST,
    "invalid_token_id": status.HTTP_400_BAD_REQUEST,
    "invalid_state_filter": status.HTTP_400_BAD_REQUEST,
    MISSING_USER_ID: status.HTTP_400_BAD_REQUEST,
    "token_not_found": status.HTTP_404_NOT_FOUND,
    "no_active_token_for_user": status.HTTP_404_NOT_FOUND,
    "no_active_tokens": status.HTTP_404_NOT_FOUND,
    "no_available_tokens": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "storage_failure": status.HTTP_503_SERVICE_UNAVAILABLE,
}

_MESSAGES: dict[str, str] = {
    "invalid_user_id": "Invalid user_id format. Must be a valid UUID.",
    "invalid_token_id": "Invalid token_id format. Must be a valid UUID.",
    "invalid_state_filter": "Invalid state filter. Must be 'available', 'active', or 'all'.",
    MISSING_USER_ID: "Missing required parameter: user_id",
    "token_not_found": "Token not found",
    "no_active_token_for_user": "No active token for this user",
    "no_active_tokens": "There are no active tokens",
    "no_available_tokens": "No available tokens. This should not happen.",
    "storage_failure": "Storage is temporarily unavailable",
}

_STATUS_NAMES: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: "bad_request",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_429_TOO_MANY_REQUESTS: "too_many_requests",
    status.HTTP_500_INTERNAL_SERVER_ERROR: "internal_server_error",
    status.HTTP_503_SERVICE_UNAVAILABLE: "service_unavailable",
}


def error_response(reason: str, *, status_code: int | None = None, message: str | None = None) -> JSONResponse:
    """Build the JSON error body used by every endpoint."""

    code = status_code or _STATUS_BY_CODE.get(reason, status.HTTP_500_INTERNAL_SERVER_ERROR)
    body = {
        "status": _STATUS_NAMES.get(code, "error"),
        "reason": reason,
        "message": message or _MESSAGES.get(reason, f"Failed to process request: {reason}"),
    }
    return JSONResponse(status_code=code, content=body)


async def token_pool_error_handler(request: Request, exc: TokenPoolError) -> JSONResponse:
    if exc.code in ("no_available_tokens", "storage_failure"):
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
    return error_response(exc.code)


__all__ = ["MISSING_USER_ID", "error_response", "token_pool_error_handler"]
