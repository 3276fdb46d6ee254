from __future__ import annotations

from typing import Any

from channelchat.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response("Bad request", code="BAD_REQUEST", message="Bad request"),
    401: _response("Unauthorized", code="AUTH_UNAUTHORIZED", message="Missing identity headers"),
    403: _response("Forbidden", code="MODEL_NOT_ALLOWED", message="Model gpt-4o is not available in this channel."),
    404: _response("Not found", code="SESSION_NOT_FOUND", message="Session not found"),
    409: _response(
        "Conflict",
        code="TURN_IN_PROGRESS",
        message="A response is already streaming for this session.",
    ),
    422: _response("Validation error", code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    500: _response("Internal server error", code="INTERNAL_ERROR", message="Internal server error"),
    503: _response("Service unavailable", code="STORE_UNAVAILABLE", message="Chat storage is unavailable."),
}
