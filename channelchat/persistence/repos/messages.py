from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from channelchat.domain.clock import as_utc
from channelchat.domain.models import ChatMessage
from channelchat.persistence.repos.sessions import touch_session


_TIE_BREAK = timedelta(microseconds=1)


async def last_created_at(session: AsyncSession, session_id: str) -> datetime | None:
    result = await session.execute(
        select(func.max(ChatMessage.created_at)).where(ChatMessage.session_id == session_id)
    )
    value = result.scalar_one_or_none()
    return as_utc(value) if value is not None else None


async def add_message(
    session: AsyncSession,
    *,
    session_id: str,
    user_id: str,
    role: str,
    content: str,
    now: datetime,
    model_id: str | None = None,
    tokens_used: int = 0,
) -> ChatMessage:
    # Keep created_at strictly increasing within a session even when the clock ties.
    created_at = as_utc(now)
    previous = await last_created_at(session, session_id)
    if previous is not None and created_at <= previous:
        created_at = previous + _TIE_BREAK
    message = ChatMessage(
        id=f"msg_{uuid4().hex}",
        session_id=session_id,
        user_id=user_id,
        role=role,
        content=content,
        model_id=model_id,
        tokens_used=tokens_used,
        created_at=created_at,
    )
    session.add(message)
    # Appends re-order the owner's sessions by recency.
    await touch_session(session, session_id, created_at)
    return message


async def list_messages(session: AsyncSession, session_id: str) -> list[ChatMessage]:
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
    )
    return list(result.scalars().all())


async def list_recent_messages(session: AsyncSession, session_id: str, limit: int) -> list[ChatMessage]:
    if limit <= 0:
        return []
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
    )
    # Query newest-first for the LIMIT, then hand back chronological order.
    return list(reversed(result.scalars().all()))


async def delete_messages(session: AsyncSession, session_id: str) -> int:
    result = await session.execute(delete(ChatMessage).where(ChatMessage.session_id == session_id))
    return int(result.rowcount or 0)
