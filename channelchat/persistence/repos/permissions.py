from __future__ import annotations

from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from channelchat.domain.models import PermissionRule


async def list_rules_for_user(session: AsyncSession, user_id: str) -> list[PermissionRule]:
    result = await session.execute(
        select(PermissionRule)
        .where(PermissionRule.user_id == user_id)
        .order_by(PermissionRule.created_at.asc(), PermissionRule.id.asc())
    )
    return list(result.scalars().all())


async def list_rules(session: AsyncSession) -> list[PermissionRule]:
    result = await session.execute(
        select(PermissionRule).order_by(PermissionRule.user_id.asc(), PermissionRule.created_at.asc())
    )
    return list(result.scalars().all())


async def add_rule(
    session: AsyncSession,
    *,
    user_id: str,
    permission_type: str,
    channel_id: str | None = None,
    model_id: str | None = None,
) -> PermissionRule:
    # Callers validate the single-target shape before reaching the repo.
    rule = PermissionRule(
        id=uuid4().hex,
        user_id=user_id,
        channel_id=channel_id,
        model_id=model_id,
        permission_type=permission_type,
    )
    session.add(rule)
    return rule


async def delete_rule(session: AsyncSession, rule_id: str) -> PermissionRule | None:
    rule = await session.get(PermissionRule, rule_id)
    if rule is None:
        return None
    await session.execute(delete(PermissionRule).where(PermissionRule.id == rule_id))
    return rule
