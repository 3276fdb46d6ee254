from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from channelchat.core.errors import SessionNotFoundError
from channelchat.domain.clock import utc_now
from channelchat.domain.models import AIModel, ChatMessage, ChatSession, User
from channelchat.services.catalog import CatalogResolver
from channelchat.services.chat_sessions import SessionManager
from channelchat.services.completion import CompletionEngine, TurnResult
from channelchat.services.export import TranscriptExport, build_export


logger = logging.getLogger(__name__)

STATE_NO_SESSION = "no_session"
STATE_ACTIVE = "active"
STATE_SWITCHING = "switching"


class ChatClient:
    """One client's view of the chat: current session, transcript and draft.

    State machine: no_session -> active -> (switching -> active)*. The
    current-session pointer, transcript and draft belong to this object only.
    """

    def __init__(
        self,
        user: User,
        *,
        sessions: SessionManager,
        engine: CompletionEngine,
        resolver: CatalogResolver,
        draft_listener: Callable[[str], None] | None = None,
    ) -> None:
        self.user = user
        self._sessions = sessions
        self._engine = engine
        self._resolver = resolver
        self._draft_listener = draft_listener
        self.session: ChatSession | None = None
        self.transcript: list[ChatMessage] = []
        self.draft: str = ""
        self.state = STATE_NO_SESSION

    @property
    def session_id(self) -> str | None:
        return self.session.id if self.session is not None else None

    def _activate(self, chat_session: ChatSession, messages: list[ChatMessage]) -> ChatSession:
        self.session = chat_session
        self.transcript = list(messages)
        self.draft = ""
        self.state = STATE_ACTIVE
        return chat_session

    async def _choose_model(self, channel_id: str, model_id: str | None) -> AIModel:
        return await self._resolver.choose_model(self.user, channel_id, model_id)

    async def open(self, channel_id: str | None = None, model_id: str | None = None) -> ChatSession:
        chat_session = await self._sessions.get_or_create_current(
            self.user.id, channel_id, model_id, choose_model=self._choose_model
        )
        messages = await self._sessions.store.list_by_session(chat_session.id)
        return self._activate(chat_session, messages)

    async def switch_to(self, session_id: str) -> ChatSession:
        previous = self.state
        self.state = STATE_SWITCHING
        # Any in-flight draft belongs to the session being left.
        self.draft = ""
        try:
            chat_session, messages = await self._sessions.load_transcript(self.user.id, session_id)
        except Exception:
            self.state = previous
            raise
        return self._activate(chat_session, messages)

    async def start_new(self, channel_id: str | None = None, model_id: str | None = None) -> ChatSession:
        chat_session = await self._sessions.start_new(
            self.user.id, channel_id, model_id, choose_model=self._choose_model
        )
        return self._activate(chat_session, [])

    async def available_models(self, channel_id: str | None = None) -> list[AIModel]:
        if channel_id is None and self.session is not None:
            channel_id = self.session.channel_id
        return await self._resolver.resolve_allowed_models(self.user, channel_id)

    async def send(self, text: str, model_id: str | None = None) -> TurnResult:
        if self.session is None:
            raise SessionNotFoundError("No active session; open one first.")
        if not text.strip():
            raise ValueError("Message must not be empty.")
        chat_session = self.session
        model = await self._resolver.check_model(
            self.user,
            chat_session.channel_id,
            model_id or chat_session.model_id,
        )

        def on_user_message(message: ChatMessage) -> None:
            if self.session_id == message.session_id:
                self.transcript.append(message)

        def on_draft(draft: str, _fragment: str) -> None:
            self.draft = draft
            if self._draft_listener is not None:
                self._draft_listener(draft)

        result = await self._engine.send_turn(
            chat_session,
            text,
            model,
            on_user_message=on_user_message,
            on_draft=on_draft,
            is_target=lambda session_id: self.session_id == session_id,
        )
        if self.session_id == result.reply.session_id:
            self.transcript.append(result.reply)
            self.draft = ""
        return result

    async def export(self, now: datetime | None = None) -> TranscriptExport:
        if self.session is None:
            raise SessionNotFoundError("No active session to export.")
        # Re-read so the export carries the stored title and every committed message.
        chat_session, messages = await self._sessions.load_transcript(self.user.id, self.session.id)
        channel = await self._resolver.get_channel(chat_session.channel_id)
        models = await self._resolver.model_names()
        return build_export(
            chat_session,
            messages,
            channel=channel,
            models=models,
            exported_at=now or utc_now(),
        )

    async def clear(self, *, confirm: bool) -> int:
        if self.session is None:
            raise SessionNotFoundError("No active session to clear.")
        deleted = await self._sessions.clear_session(self.user.id, self.session.id, confirm=confirm)
        self.transcript = []
        self.draft = ""
        return deleted

    def sign_out(self) -> None:
        # Drop the client view; any in-flight turn commits as interrupted.
        self.session = None
        self.transcript = []
        self.draft = ""
        self.state = STATE_NO_SESSION
