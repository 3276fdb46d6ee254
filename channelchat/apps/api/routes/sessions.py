from __future__ import annotations

import asyncio
import json
import logging
from functools import partial
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel, Field

from channelchat.apps.api.deps import (
    get_catalog_resolver,
    get_completion_engine,
    get_current_user,
    get_session_manager,
)
from channelchat.apps.api.errors import map_domain_error
from channelchat.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from channelchat.apps.api.response import SuccessEnvelope, get_request_id, success_response
from channelchat.apps.api.schemas import (
    MessageResponse,
    SessionResponse,
    message_payload,
    session_payload,
)
from channelchat.core.errors import ChannelChatError, TurnInProgressError
from channelchat.domain.clock import utc_now
from channelchat.domain.events import (
    ErrorData,
    EventPayload,
    MessageFinalData,
    TokenDeltaData,
    TurnAcceptedData,
)
from channelchat.domain.models import ChatMessage, User
from channelchat.services.catalog import CatalogResolver
from channelchat.services.chat_sessions import SessionManager
from channelchat.services.completion import CompletionEngine
from channelchat.services.export import build_export, dump_export, export_filename

logger = logging.getLogger(__name__)
router = APIRouter(tags=["sessions"], responses=DEFAULT_ERROR_RESPONSES)

# Turns outlive their SSE response; hold references so the loop does not drop them.
_background_turns: set[asyncio.Task] = set()


class OpenSessionRequest(BaseModel):
    channel_id: str | None = None
    model_id: str | None = None


class NewSessionRequest(OpenSessionRequest):
    title: str | None = Field(default=None, max_length=200)


class TurnRequest(BaseModel):
    message: str = Field(min_length=1)
    model_id: str | None = None


class TranscriptResponse(BaseModel):
    session: SessionResponse
    messages: list[MessageResponse]


class ClearResponse(BaseModel):
    session_id: str
    deleted: int


def _wrap_payload(payload_type: str, request_id: str, session_id: str, data: dict) -> EventPayload:
    # Every streamed event carries request/session identifiers for client-side routing.
    return {
        "type": payload_type,
        "request_id": request_id,
        "session_id": session_id,
        "data": data,
    }


def _sse_message(payload: EventPayload) -> str:
    # SSE framing: event name is always "message" and data is one compact JSON line.
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"event: message\ndata: {data}\n\n"


def _sse_headers() -> dict[str, str]:
    return {
        "Cache-Control": "no-cache",
        "Content-Type": "text/event-stream",
        "Connection": "keep-alive",
    }


@router.get("/sessions", response_model=SuccessEnvelope[list[SessionResponse]])
async def list_sessions(
    request: Request,
    user: User = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> dict:
    items = await sessions.list_sessions(user.id)
    return success_response(
        request=request,
        data=[session_payload(item).model_dump(mode="json") for item in items],
    )


@router.post("/sessions/current", response_model=SuccessEnvelope[TranscriptResponse])
async def open_current_session(
    request: Request,
    payload: OpenSessionRequest | None = None,
    user: User = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
    resolver: CatalogResolver = Depends(get_catalog_resolver),
) -> dict:
    payload = payload or OpenSessionRequest()
    chat_session = await sessions.get_or_create_current(
        user.id,
        payload.channel_id,
        payload.model_id,
        choose_model=partial(resolver.choose_model, user),
    )
    messages = await sessions.store.list_by_session(chat_session.id)
    data = TranscriptResponse(
        session=session_payload(chat_session),
        messages=[message_payload(message) for message in messages],
    )
    return success_response(request=request, data=data)


@router.post("/sessions", status_code=201, response_model=SuccessEnvelope[SessionResponse])
async def start_new_session(
    request: Request,
    payload: NewSessionRequest | None = None,
    user: User = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
    resolver: CatalogResolver = Depends(get_catalog_resolver),
) -> dict:
    payload = payload or NewSessionRequest()
    chat_session = await sessions.start_new(
        user.id,
        payload.channel_id,
        payload.model_id,
        payload.title,
        choose_model=partial(resolver.choose_model, user),
    )
    return success_response(request=request, data=session_payload(chat_session))


@router.get("/sessions/{session_id}/messages", response_model=SuccessEnvelope[TranscriptResponse])
async def get_transcript(
    session_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> dict:
    chat_session, messages = await sessions.load_transcript(user.id, session_id)
    data = TranscriptResponse(
        session=session_payload(chat_session),
        messages=[message_payload(message) for message in messages],
    )
    return success_response(request=request, data=data)


@router.delete("/sessions/{session_id}/messages", response_model=SuccessEnvelope[ClearResponse])
async def clear_transcript(
    session_id: str,
    request: Request,
    confirm: bool = Query(default=False),
    user: User = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> dict:
    deleted = await sessions.clear_session(user.id, session_id, confirm=confirm)
    return success_response(request=request, data=ClearResponse(session_id=session_id, deleted=deleted))


@router.get("/sessions/{session_id}/export")
async def export_transcript(
    session_id: str,
    user: User = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
    resolver: CatalogResolver = Depends(get_catalog_resolver),
) -> Response:
    chat_session, messages = await sessions.load_transcript(user.id, session_id)
    exported_at = utc_now()
    document = build_export(
        chat_session,
        messages,
        channel=await resolver.get_channel(chat_session.channel_id),
        models=await resolver.model_names(),
        exported_at=exported_at,
    )
    # Downloads are the raw document, not an API envelope.
    return Response(
        content=dump_export(document),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(exported_at)}"'},
    )


@router.post("/sessions/{session_id}/turns")
async def send_turn(
    session_id: str,
    payload: TurnRequest,
    http_request: Request,
    user: User = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
    engine: CompletionEngine = Depends(get_completion_engine),
    resolver: CatalogResolver = Depends(get_catalog_resolver),
) -> StreamingResponse:
    # Ownership, model access and the in-flight guard fail as plain JSON errors before streaming.
    chat_session = await sessions.get_owned(user.id, session_id)
    model = await resolver.check_model(user, chat_session.channel_id, payload.model_id or chat_session.model_id)
    if engine.is_in_flight(chat_session.id):
        raise TurnInProgressError(f"A response is already streaming for session {chat_session.id}.")

    request_id = get_request_id(http_request)
    queue: asyncio.Queue[EventPayload | None] = asyncio.Queue()

    def on_user_message(message: ChatMessage) -> None:
        queue.put_nowait(
            _wrap_payload(
                "turn.accepted",
                request_id,
                session_id,
                TurnAcceptedData(message=message_payload(message).model_dump(mode="json")),
            )
        )

    def on_draft(_draft: str, fragment: str) -> None:
        queue.put_nowait(_wrap_payload("token.delta", request_id, session_id, TokenDeltaData(delta=fragment)))

    async def run_turn() -> None:
        try:
            result = await engine.send_turn(
                chat_session,
                payload.message,
                model,
                on_user_message=on_user_message,
                on_draft=on_draft,
            )
            queue.put_nowait(
                _wrap_payload(
                    "message.final",
                    request_id,
                    session_id,
                    MessageFinalData(status=result.status, message=message_payload(result.reply).model_dump(mode="json")),
                )
            )
        except ChannelChatError as exc:
            _status, code, message = map_domain_error(exc)
            queue.put_nowait(_wrap_payload("error", request_id, session_id, ErrorData(code=code, message=message)))
        except Exception:
            logger.exception("turn_failed session_id=%s request_id=%s", session_id, request_id)
            queue.put_nowait(
                _wrap_payload(
                    "error",
                    request_id,
                    session_id,
                    ErrorData(code="INTERNAL_ERROR", message="Internal server error"),
                )
            )
        finally:
            queue.put_nowait(None)

    # The turn commits even if the client disconnects mid-stream.
    task = asyncio.create_task(run_turn())
    _background_turns.add(task)
    task.add_done_callback(_background_turns.discard)

    async def event_stream() -> AsyncGenerator[str, None]:
        while True:
            item = await queue.get()
            if item is None:
                return
            yield _sse_message(item)

    return StreamingResponse(event_stream(), headers=_sse_headers(), media_type="text/event-stream")
