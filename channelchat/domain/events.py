from __future__ import annotations

from typing import Any, Literal, TypedDict


class TurnAcceptedData(TypedDict):
    message: dict[str, Any]


class TokenDeltaData(TypedDict):
    delta: str


class MessageFinalData(TypedDict):
    # status is "ok" for a completed reply, "error" or "interrupted" for fixed replies.
    status: str
    message: dict[str, Any]


class ErrorData(TypedDict):
    message: str
    code: str


class EventPayload(TypedDict, total=False):
    type: Literal["turn.accepted", "token.delta", "message.final", "error"]
    request_id: str
    session_id: str
    data: dict[str, Any]
