from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channelchat.core.config import get_settings
from channelchat.core.errors import ClearNotConfirmedError, SessionNotFoundError, TranscriptStoreError
from channelchat.domain.clock import as_utc, utc_now
from channelchat.domain.models import AIModel, ChatMessage, ChatSession
from channelchat.persistence.db import SessionLocal
from channelchat.persistence.repos import sessions as sessions_repo
from channelchat.persistence.transcript import TranscriptStore


logger = logging.getLogger(__name__)

# (channel_id, requested model_id or None) -> the model a new session is bound to.
ModelChooser = Callable[[str, str | None], Awaitable[AIModel]]


class SessionManager:
    """Creates, finds and loads chat sessions for users.

    The current session of a user is the most recently updated one. Creation
    is serialised per user so concurrent cold starts produce one session.
    When a ``choose_model`` callback is given, a session is only created once
    it accepts the channel and model.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        store: TranscriptStore | None = None,
        time_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._store = store or TranscriptStore(self._session_factory, time_provider)
        self._now = time_provider
        # Idle locks drop out once no coroutine holds a reference.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def store(self) -> TranscriptStore:
        return self._store

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _binding(
        self,
        channel_id: str | None,
        model_id: str | None,
        choose_model: ModelChooser | None,
    ) -> tuple[str, str]:
        settings = get_settings()
        channel_id = channel_id or settings.default_channel_id
        if choose_model is not None:
            model = await choose_model(channel_id, model_id)
            return channel_id, model.id
        return channel_id, model_id or settings.default_model_id

    async def get_or_create_current(
        self,
        user_id: str,
        channel_id: str | None = None,
        model_id: str | None = None,
        *,
        choose_model: ModelChooser | None = None,
    ) -> ChatSession:
        lock = self._user_lock(user_id)
        async with lock:
            try:
                async with self._session_factory() as session:
                    latest = await sessions_repo.get_latest_session(session, user_id)
                    if latest is not None:
                        return latest
                    channel_id, model_id = await self._binding(channel_id, model_id, choose_model)
                    created = await sessions_repo.create_session(
                        session,
                        user_id=user_id,
                        channel_id=channel_id,
                        model_id=model_id,
                        title=get_settings().default_session_title,
                        now=self._now(),
                    )
                    await session.commit()
            except SQLAlchemyError as exc:
                logger.error("session_get_or_create_failed user_id=%s", user_id, exc_info=exc)
                raise TranscriptStoreError("Failed to open a chat session.") from exc
        logger.info("session_created user_id=%s session_id=%s", user_id, created.id)
        return created

    async def start_new(
        self,
        user_id: str,
        channel_id: str | None = None,
        model_id: str | None = None,
        title: str | None = None,
        *,
        choose_model: ModelChooser | None = None,
    ) -> ChatSession:
        channel_id, model_id = await self._binding(channel_id, model_id, choose_model)
        lock = self._user_lock(user_id)
        async with lock:
            try:
                async with self._session_factory() as session:
                    now = self._now()
                    latest = await sessions_repo.get_latest_session(session, user_id)
                    # The new session must sort first even if the clock has not advanced.
                    if latest is not None and as_utc(latest.updated_at) >= now:
                        now = as_utc(latest.updated_at) + timedelta(microseconds=1)
                    created = await sessions_repo.create_session(
                        session,
                        user_id=user_id,
                        channel_id=channel_id,
                        model_id=model_id,
                        title=title or get_settings().default_session_title,
                        now=now,
                    )
                    await session.commit()
            except SQLAlchemyError as exc:
                logger.error("session_start_failed user_id=%s", user_id, exc_info=exc)
                raise TranscriptStoreError("Failed to start a chat session.") from exc
        logger.info("session_started user_id=%s session_id=%s", user_id, created.id)
        return created

    async def get_owned(self, user_id: str, session_id: str) -> ChatSession:
        try:
            async with self._session_factory() as session:
                chat_session = await sessions_repo.get_user_session(
                    session, user_id=user_id, session_id=session_id
                )
        except SQLAlchemyError as exc:
            logger.error("session_lookup_failed session_id=%s", session_id, exc_info=exc)
            raise TranscriptStoreError("Failed to load the chat session.") from exc
        if chat_session is None:
            raise SessionNotFoundError(f"Session {session_id} not found.")
        return chat_session

    async def load_transcript(self, user_id: str, session_id: str) -> tuple[ChatSession, list[ChatMessage]]:
        # Read-only: switching sessions never touches persisted state.
        chat_session = await self.get_owned(user_id, session_id)
        messages = await self._store.list_by_session(session_id)
        return chat_session, messages

    async def list_sessions(self, user_id: str) -> list[ChatSession]:
        return await self._store.list_sessions(user_id)

    async def clear_session(self, user_id: str, session_id: str, *, confirm: bool) -> int:
        if not confirm:
            raise ClearNotConfirmedError("Clearing a session requires confirmation.")
        await self.get_owned(user_id, session_id)
        deleted = await self._store.clear(session_id)
        logger.info("session_cleared session_id=%s deleted=%s", session_id, deleted)
        return deleted
