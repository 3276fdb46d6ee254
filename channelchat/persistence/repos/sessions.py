from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from channelchat.domain.models import ChatSession


def _recency_order():
    # updated_at ties fall back to creation order, then id, so "latest" is deterministic.
    return (ChatSession.updated_at.desc(), ChatSession.created_at.desc(), ChatSession.id.desc())


async def get_session(session: AsyncSession, session_id: str) -> ChatSession | None:
    result = await session.execute(select(ChatSession).where(ChatSession.id == session_id))
    return result.scalar_one_or_none()


async def get_user_session(session: AsyncSession, *, user_id: str, session_id: str) -> ChatSession | None:
    # Owner predicate keeps users from loading each other's transcripts.
    result = await session.execute(
        select(ChatSession).where(ChatSession.id == session_id, ChatSession.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_latest_session(session: AsyncSession, user_id: str) -> ChatSession | None:
    result = await session.execute(
        select(ChatSession).where(ChatSession.user_id == user_id).order_by(*_recency_order()).limit(1)
    )
    return result.scalar_one_or_none()


async def list_sessions(session: AsyncSession, user_id: str) -> list[ChatSession]:
    result = await session.execute(
        select(ChatSession).where(ChatSession.user_id == user_id).order_by(*_recency_order())
    )
    return list(result.scalars().all())


async def create_session(
    session: AsyncSession,
    *,
    user_id: str,
    channel_id: str | None,
    model_id: str | None,
    title: str,
    now: datetime,
) -> ChatSession:
    chat_session = ChatSession(
        id=f"session_{uuid4().hex}",
        user_id=user_id,
        channel_id=channel_id,
        model_id=model_id,
        title=title,
        created_at=now,
        updated_at=now,
    )
    session.add(chat_session)
    return chat_session


async def touch_session(session: AsyncSession, session_id: str, now: datetime) -> None:
    # updated_at only moves forward; start_new may already have pushed it past ``now``.
    await session.execute(
        update(ChatSession)
        .where(ChatSession.id == session_id, ChatSession.updated_at < now)
        .values(updated_at=now)
        .execution_options(synchronize_session="fetch")
    )


async def rename_session(session: AsyncSession, session_id: str, title: str) -> None:
    await session.execute(update(ChatSession).where(ChatSession.id == session_id).values(title=title))
