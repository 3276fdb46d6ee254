from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from channelchat.apps.api.response import error_response
from channelchat.core.errors import (
    ChannelChatError,
    ClearNotConfirmedError,
    ModelNotAllowedError,
    NoAvailableModelError,
    SessionNotFoundError,
    TranscriptStoreError,
    TurnInProgressError,
)
from channelchat.services.permissions import PermissionRuleInvalidError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Domain errors mapped to (status, code); order matters for subclasses.
_DOMAIN_ERRORS: tuple[tuple[type[Exception], int, str], ...] = (
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND, "SESSION_NOT_FOUND"),
    (TurnInProgressError, status.HTTP_409_CONFLICT, "TURN_IN_PROGRESS"),
    (ModelNotAllowedError, status.HTTP_403_FORBIDDEN, "MODEL_NOT_ALLOWED"),
    (NoAvailableModelError, status.HTTP_409_CONFLICT, "NO_AVAILABLE_MODEL"),
    (ClearNotConfirmedError, status.HTTP_400_BAD_REQUEST, "CONFIRMATION_REQUIRED"),
    (TranscriptStoreError, status.HTTP_503_SERVICE_UNAVAILABLE, "STORE_UNAVAILABLE"),
    (PermissionRuleInvalidError, status.HTTP_422_UNPROCESSABLE_ENTITY, "PERMISSION_RULE_INVALID"),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def map_domain_error(exc: Exception) -> tuple[int, str, str]:
    for error_type, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            message = getattr(exc, "message", None) or str(exc)
            if isinstance(exc, TranscriptStoreError):
                # Storage details stay in server logs.
                message = "Chat storage is unavailable. Please retry."
            return status_code, code, message
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "Internal server error"


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code, code, message = map_domain_error(exc)
    payload = error_response(request=request, code=code, message=message)
    return JSONResponse(content=payload, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error("unhandled_exception path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)


DOMAIN_ERROR_TYPES: tuple[type[Exception], ...] = (ChannelChatError, PermissionRuleInvalidError)
