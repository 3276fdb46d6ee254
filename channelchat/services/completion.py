from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Callable, Sequence

from channelchat.core.config import get_settings
from channelchat.core.errors import ProviderError, ProviderTimeoutError, TurnInProgressError
from channelchat.domain.models import AIModel, ChatMessage, ChatSession
from channelchat.persistence.transcript import TranscriptStore
from channelchat.providers.llm.base import CompletionRequest, LLMProvider
from channelchat.providers.llm.factory import get_llm_provider


logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_ERROR = "error"
STATUS_INTERRUPTED = "interrupted"

DraftCallback = Callable[[str, str], None]
MessageCallback = Callable[[ChatMessage], None]
TargetGuard = Callable[[str], bool]


@dataclass(frozen=True)
class TurnResult:
    user_message: ChatMessage
    reply: ChatMessage
    status: str


def estimate_tokens(text: str, *, ratio: float) -> int:
    # Placeholder usage metric (characters / ratio); not an exact token count.
    if not text:
        return 0
    return math.ceil(len(text) / max(ratio, 0.1))


def build_context(history: Sequence[ChatMessage], user_text: str, limit: int) -> list[dict[str, str]]:
    window = list(history)[-limit:] if limit > 0 else []
    messages = [{"role": message.role, "content": message.content} for message in window]
    messages.append({"role": "user", "content": user_text})
    return messages


class CompletionEngine:
    """Runs one streamed assistant turn per session and commits it to the transcript.

    The user message is durable before the provider is called. Whatever
    happens afterwards, exactly one assistant message is appended: the
    completed reply, the fixed error reply, or the fixed interruption reply
    when the client stopped targeting the session mid-stream.
    """

    def __init__(
        self,
        store: TranscriptStore | None = None,
        provider_factory: Callable[[AIModel], LLMProvider] = get_llm_provider,
        *,
        context_window: int | None = None,
        timeout_s: float | None = None,
        token_ratio: float | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store or TranscriptStore()
        self._provider_factory = provider_factory
        self._context_window = context_window if context_window is not None else settings.context_window_messages
        self._timeout_s = timeout_s if timeout_s is not None else settings.stream_timeout_s
        self._token_ratio = token_ratio or settings.token_estimator_ratio
        self._inflight: set[str] = set()
        self._drafts: dict[str, str] = {}

    def is_in_flight(self, session_id: str) -> bool:
        return session_id in self._inflight

    def draft_for(self, session_id: str) -> str | None:
        return self._drafts.get(session_id)

    async def send_turn(
        self,
        chat_session: ChatSession,
        user_text: str,
        model: AIModel,
        *,
        on_user_message: MessageCallback | None = None,
        on_draft: DraftCallback | None = None,
        is_target: TargetGuard | None = None,
    ) -> TurnResult:
        session_id = chat_session.id
        # Check-and-set with no await in between, so it is atomic on the event loop.
        if session_id in self._inflight:
            raise TurnInProgressError(f"A response is already streaming for session {session_id}.")
        self._inflight.add(session_id)
        try:
            return await self._run_turn(
                chat_session,
                user_text,
                model,
                on_user_message=on_user_message,
                on_draft=on_draft,
                is_target=is_target,
            )
        finally:
            self._inflight.discard(session_id)
            self._drafts.pop(session_id, None)

    async def _run_turn(
        self,
        chat_session: ChatSession,
        user_text: str,
        model: AIModel,
        *,
        on_user_message: MessageCallback | None,
        on_draft: DraftCallback | None,
        is_target: TargetGuard | None,
    ) -> TurnResult:
        session_id = chat_session.id
        history = await self._store.recent(session_id, self._context_window)
        context = build_context(history, user_text, self._context_window)

        user_message = await self._store.append(
            session_id=session_id,
            user_id=chat_session.user_id,
            role="user",
            content=user_text,
            model_id=model.id,
        )
        if on_user_message is not None:
            on_user_message(user_message)
        if not history:
            await self._store.autotitle(session_id, user_text)

        def still_target() -> bool:
            return is_target is None or is_target(session_id)

        request = CompletionRequest(
            messages=context,
            model=model.model_id,
            max_tokens=model.max_tokens,
            temperature=model.temperature,
        )
        parts: list[str] = []

        async def consume() -> None:
            provider = self._provider_factory(model)
            async for fragment in provider.stream(request):
                if not fragment:
                    continue
                parts.append(fragment)
                draft = "".join(parts)
                self._drafts[session_id] = draft
                if on_draft is not None and still_target():
                    on_draft(draft, fragment)

        failure: Exception | None = None
        try:
            await asyncio.wait_for(consume(), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            logger.warning("completion_stream_timeout session_id=%s model=%s", session_id, model.id)
            failure = ProviderTimeoutError("Completion stream timed out.")
        except asyncio.CancelledError:
            # Keep the transcript gap-free even when the caller's task is torn down.
            await asyncio.shield(self._append_fixed_reply(chat_session, model, STATUS_INTERRUPTED))
            raise
        except Exception as exc:
            logger.warning(
                "completion_stream_failed session_id=%s model=%s error=%s",
                session_id,
                model.id,
                type(exc).__name__,
            )
            failure = exc

        content = "".join(parts)
        if failure is None and not content.strip():
            failure = ProviderError("Completion stream returned no content.")

        if not still_target():
            logger.info("completion_abandoned session_id=%s discarded_chars=%s", session_id, len(content))
            reply = await self._append_fixed_reply(chat_session, model, STATUS_INTERRUPTED)
            return TurnResult(user_message=user_message, reply=reply, status=STATUS_INTERRUPTED)
        if failure is not None:
            reply = await self._append_fixed_reply(chat_session, model, STATUS_ERROR)
            return TurnResult(user_message=user_message, reply=reply, status=STATUS_ERROR)

        reply = await self._store.append(
            session_id=session_id,
            user_id=chat_session.user_id,
            role="assistant",
            content=content,
            model_id=model.id,
            tokens_used=estimate_tokens(content, ratio=self._token_ratio),
        )
        logger.info(
            "completion_committed session_id=%s model=%s tokens=%s",
            session_id,
            model.id,
            reply.tokens_used,
        )
        return TurnResult(user_message=user_message, reply=reply, status=STATUS_OK)

    async def _append_fixed_reply(self, chat_session: ChatSession, model: AIModel, status: str) -> ChatMessage:
        settings = get_settings()
        text = settings.interrupted_reply_text if status == STATUS_INTERRUPTED else settings.error_reply_text
        return await self._store.append(
            session_id=chat_session.id,
            user_id=chat_session.user_id,
            role="assistant",
            content=text,
            model_id=model.id,
            tokens_used=0,
        )
