from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from channelchat.domain.models import AIModel, Channel


async def get_model(session: AsyncSession, model_id: str) -> AIModel | None:
    return await session.get(AIModel, model_id)


async def get_channel(session: AsyncSession, channel_id: str) -> Channel | None:
    return await session.get(Channel, channel_id)


async def list_models(session: AsyncSession, *, include_inactive: bool = False) -> list[AIModel]:
    stmt = select(AIModel)
    if not include_inactive:
        stmt = stmt.where(AIModel.is_active.is_(True))
    result = await session.execute(stmt.order_by(AIModel.display_name.asc(), AIModel.id.asc()))
    return list(result.scalars().all())


async def list_channels(session: AsyncSession, *, include_inactive: bool = False) -> list[Channel]:
    stmt = select(Channel)
    if not include_inactive:
        stmt = stmt.where(Channel.is_active.is_(True))
    result = await session.execute(stmt.order_by(Channel.name.asc(), Channel.id.asc()))
    return list(result.scalars().all())


async def add_model(
    session: AsyncSession,
    *,
    model_pk: str,
    name: str,
    display_name: str,
    provider: str,
    model_id: str,
    max_tokens: int = 4000,
    temperature: float = 0.7,
    is_active: bool = True,
) -> AIModel:
    model = AIModel(
        id=model_pk,
        name=name,
        display_name=display_name,
        provider=provider,
        model_id=model_id,
        max_tokens=max_tokens,
        temperature=temperature,
        is_active=is_active,
    )
    session.add(model)
    return model


async def add_channel(
    session: AsyncSession,
    *,
    channel_id: str,
    name: str,
    description: str | None = None,
    allowed_models: list[str] | None = None,
    is_active: bool = True,
) -> Channel:
    channel = Channel(
        id=channel_id,
        name=name,
        description=description,
        allowed_models=allowed_models,
        is_active=is_active,
    )
    session.add(channel)
    return channel
