from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channelchat.core.config import get_settings
from channelchat.core.errors import ModelNotAllowedError, NoAvailableModelError, TranscriptStoreError
from channelchat.domain.models import AIModel, Channel, PermissionRule, User
from channelchat.persistence.db import SessionLocal
from channelchat.persistence.repos import catalog as catalog_repo
from channelchat.persistence.repos import permissions as permissions_repo
from channelchat.services.permissions import can_use_channel, model_overrides


logger = logging.getLogger(__name__)


def parse_allowed_models(raw: Any) -> frozenset[str] | None:
    """Normalise a channel allow-list into a set of model ids.

    ``None`` means "every active model". Missing, empty, unparsable or
    non-list values all fall back to it so old channel rows keep working.
    """
    if raw is None:
        return None
    value = raw
    if isinstance(raw, (bytes, bytearray)):
        value = raw.decode("utf-8", errors="replace")
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = json.loads(value)
        except ValueError:
            logger.warning("channel_allow_list_unparsable value=%r", raw)
            return None
    if not isinstance(value, (list, tuple, set, frozenset)):
        logger.warning("channel_allow_list_not_a_list type=%s", type(value).__name__)
        return None
    ids = frozenset(item for item in value if isinstance(item, str) and item)
    return ids or None


def filter_allowed_models(
    *,
    user: User,
    channel: Channel | None,
    models: Iterable[AIModel],
    rules: Iterable[PermissionRule],
) -> list[AIModel]:
    """Compute the effective model set for ``user`` inside ``channel``.

    Channel allow-list ∩ globally active models, then model-level overrides:
    deny removes, allow re-adds a model excluded only by the channel scope.
    A deny on the channel itself empties the result.
    """
    rules = list(rules)
    if not can_use_channel(user, channel, rules).allowed:
        return []
    scope = parse_allowed_models(channel.allowed_models)
    granted, denied = model_overrides(rules, user.id)
    allowed: list[AIModel] = []
    for model in models:
        # Global inactivity is never overridden by an allow rule.
        if not model.is_active or model.id in denied:
            continue
        if scope is not None and model.id not in scope and model.id not in granted:
            continue
        allowed.append(model)
    return sorted(allowed, key=lambda model: (model.display_name, model.id))


def first_available_model(models: list[AIModel], preferred_id: str | None = None) -> AIModel | None:
    # Prefer the requested model, otherwise fall back to the first allowed one.
    if preferred_id:
        for model in models:
            if model.id == preferred_id:
                return model
    return models[0] if models else None


async def resolve_allowed_models(session: AsyncSession, user: User, channel: Channel | None) -> list[AIModel]:
    models = await catalog_repo.list_models(session)
    rules = await permissions_repo.list_rules_for_user(session, user.id)
    return filter_allowed_models(user=user, channel=channel, models=models, rules=rules)


class CatalogResolver:
    """Reads channels, models and permission rules from the store on every call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    async def resolve_allowed_models(self, user: User, channel_id: str | None) -> list[AIModel]:
        try:
            async with self._session_factory() as session:
                channel = await catalog_repo.get_channel(session, channel_id) if channel_id else None
                return await resolve_allowed_models(session, user, channel)
        except SQLAlchemyError as exc:
            logger.error("catalog_resolve_failed user_id=%s channel_id=%s", user.id, channel_id, exc_info=exc)
            raise TranscriptStoreError("Failed to load the model catalog.") from exc

    async def visible_channels(self, user: User) -> list[Channel]:
        try:
            async with self._session_factory() as session:
                channels = await catalog_repo.list_channels(session)
                rules = await permissions_repo.list_rules_for_user(session, user.id)
        except SQLAlchemyError as exc:
            logger.error("catalog_channels_failed user_id=%s", user.id, exc_info=exc)
            raise TranscriptStoreError("Failed to load channels.") from exc
        return [channel for channel in channels if can_use_channel(user, channel, rules).allowed]

    async def check_model(self, user: User, channel_id: str | None, model_id: str | None) -> AIModel:
        allowed = await self.resolve_allowed_models(user, channel_id)
        if not allowed:
            raise NoAvailableModelError("No model is available for this channel.")
        for model in allowed:
            if model.id == model_id:
                return model
        raise ModelNotAllowedError(f"Model {model_id} is not available in this channel.")

    async def choose_model(self, user: User, channel_id: str | None, model_id: str | None = None) -> AIModel:
        """Pick the model a new session in ``channel_id`` is bound to.

        An explicit ``model_id`` must be allowed. Without one, the configured
        default is used when allowed, otherwise the first allowed model.
        """
        if model_id:
            return await self.check_model(user, channel_id, model_id)
        allowed = await self.resolve_allowed_models(user, channel_id)
        model = first_available_model(allowed, get_settings().default_model_id)
        if model is None:
            raise NoAvailableModelError("No model is available for this channel.")
        return model

    async def model_names(self) -> dict[str, AIModel]:
        # Includes inactive models so historical messages keep their display names.
        async with self._session_factory() as session:
            return {model.id: model for model in await catalog_repo.list_models(session, include_inactive=True)}

    async def get_channel(self, channel_id: str | None) -> Channel | None:
        if not channel_id:
            return None
        async with self._session_factory() as session:
            return await catalog_repo.get_channel(session, channel_id)
