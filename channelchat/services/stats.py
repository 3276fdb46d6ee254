from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from channelchat.domain.models import AIModel, Channel, ChatMessage, ChatSession, User


@dataclass(frozen=True)
class SystemStats:
    total_users: int
    active_users: int
    total_messages: int
    total_sessions: int
    active_models: int
    active_channels: int
    today_messages: int
    avg_messages_per_session: float

    def as_dict(self) -> dict:
        return asdict(self)


async def _count(session: AsyncSession, model, *criteria) -> int:
    stmt = select(func.count()).select_from(model)
    if criteria:
        stmt = stmt.where(*criteria)
    return int((await session.execute(stmt)).scalar_one())


async def collect_stats(session: AsyncSession, *, now: datetime) -> SystemStats:
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    total_messages = await _count(session, ChatMessage)
    total_sessions = await _count(session, ChatSession)
    average = round(total_messages / total_sessions, 1) if total_sessions else 0.0
    return SystemStats(
        total_users=await _count(session, User),
        active_users=await _count(session, User, User.is_active.is_(True)),
        total_messages=total_messages,
        total_sessions=total_sessions,
        active_models=await _count(session, AIModel, AIModel.is_active.is_(True)),
        active_channels=await _count(session, Channel, Channel.is_active.is_(True)),
        today_messages=await _count(
            session,
            ChatMessage,
            ChatMessage.created_at >= day_start,
            ChatMessage.created_at < day_start + timedelta(days=1),
        ),
        avg_messages_per_session=average,
    )
