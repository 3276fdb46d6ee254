from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channelchat.core.config import get_settings
from channelchat.core.errors import TranscriptStoreError
from channelchat.domain.clock import utc_now
from channelchat.domain.models import ChatMessage, ChatSession
from channelchat.persistence.db import SessionLocal
from channelchat.persistence.repos import messages as messages_repo
from channelchat.persistence.repos import sessions as sessions_repo


logger = logging.getLogger(__name__)


class TranscriptStore:
    """Append-only message persistence for chat sessions.

    Every method opens its own unit of work so an append is committed before
    it returns. SQLAlchemy failures are logged and re-raised as
    ``TranscriptStoreError`` so callers only handle one error type.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        time_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._now = time_provider

    async def append(
        self,
        *,
        session_id: str,
        user_id: str,
        role: str,
        content: str,
        model_id: str | None = None,
        tokens_used: int = 0,
    ) -> ChatMessage:
        try:
            async with self._session_factory() as session:
                message = await messages_repo.add_message(
                    session,
                    session_id=session_id,
                    user_id=user_id,
                    role=role,
                    content=content,
                    now=self._now(),
                    model_id=model_id,
                    tokens_used=tokens_used,
                )
                await session.commit()
                return message
        except SQLAlchemyError as exc:
            logger.error("transcript_append_failed session_id=%s role=%s", session_id, role, exc_info=exc)
            raise TranscriptStoreError("Failed to persist chat message.") from exc

    async def list_by_session(self, session_id: str) -> list[ChatMessage]:
        try:
            async with self._session_factory() as session:
                return await messages_repo.list_messages(session, session_id)
        except SQLAlchemyError as exc:
            logger.error("transcript_list_failed session_id=%s", session_id, exc_info=exc)
            raise TranscriptStoreError("Failed to load chat messages.") from exc

    async def recent(self, session_id: str, limit: int) -> list[ChatMessage]:
        try:
            async with self._session_factory() as session:
                return await messages_repo.list_recent_messages(session, session_id, limit)
        except SQLAlchemyError as exc:
            logger.error("transcript_recent_failed session_id=%s", session_id, exc_info=exc)
            raise TranscriptStoreError("Failed to load recent chat messages.") from exc

    async def list_sessions(self, user_id: str) -> list[ChatSession]:
        try:
            async with self._session_factory() as session:
                return await sessions_repo.list_sessions(session, user_id)
        except SQLAlchemyError as exc:
            logger.error("transcript_sessions_failed user_id=%s", user_id, exc_info=exc)
            raise TranscriptStoreError("Failed to load chat sessions.") from exc

    async def clear(self, session_id: str) -> int:
        try:
            async with self._session_factory() as session:
                deleted = await messages_repo.delete_messages(session, session_id)
                await session.commit()
                return deleted
        except SQLAlchemyError as exc:
            logger.error("transcript_clear_failed session_id=%s", session_id, exc_info=exc)
            raise TranscriptStoreError("Failed to clear chat messages.") from exc

    async def autotitle(self, session_id: str, first_message: str) -> str | None:
        # Replace the default title once; user-chosen titles are left alone.
        settings = get_settings()
        title = " ".join(first_message.split())[: settings.session_title_max_chars].strip()
        if not title:
            return None
        try:
            async with self._session_factory() as session:
                chat_session = await sessions_repo.get_session(session, session_id)
                if chat_session is None or chat_session.title != settings.default_session_title:
                    return None
                await sessions_repo.rename_session(session, session_id, title)
                await session.commit()
                return title
        except SQLAlchemyError as exc:
            logger.warning("transcript_autotitle_failed session_id=%s", session_id, exc_info=exc)
            return None
