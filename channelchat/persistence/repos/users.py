from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from channelchat.domain.models import User


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    return await session.get(User, user_id)


async def list_users(session: AsyncSession) -> list[User]:
    result = await session.execute(select(User).order_by(User.created_at.asc(), User.id.asc()))
    return list(result.scalars().all())


async def add_user(
    session: AsyncSession,
    *,
    user_id: str,
    email: str,
    display_name: str | None,
    role: str,
) -> User:
    user = User(id=user_id, email=email, display_name=display_name, role=role, is_active=True)
    session.add(user)
    return user
