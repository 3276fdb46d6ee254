from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from channelchat.domain.clock import as_utc
from channelchat.domain.models import AIModel, Channel, ChatMessage, ChatSession, PermissionRule, User
from channelchat.services.catalog import parse_allowed_models


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


class ModelResponse(BaseModel):
    id: str
    name: str
    display_name: str
    provider: str
    model_id: str
    max_tokens: int
    temperature: float
    is_active: bool


class ChannelResponse(BaseModel):
    id: str
    name: str
    description: str | None
    # None means every active model is allowed.
    allowed_models: list[str] | None
    is_active: bool


class SessionResponse(BaseModel):
    id: str
    user_id: str
    channel_id: str | None
    model_id: str | None
    title: str | None
    created_at: str | None
    updated_at: str | None


class MessageResponse(BaseModel):
    id: str
    session_id: str
    role: str
    content: str
    model_id: str | None
    tokens_used: int
    created_at: str | None


class UserResponse(BaseModel):
    id: str
    email: str
    display_name: str | None
    role: str
    is_active: bool
    created_at: str | None


class PermissionResponse(BaseModel):
    id: str
    user_id: str
    channel_id: str | None
    model_id: str | None
    permission_type: str
    created_at: str | None


def model_payload(model: AIModel) -> ModelResponse:
    return ModelResponse(
        id=model.id,
        name=model.name,
        display_name=model.display_name,
        provider=model.provider,
        model_id=model.model_id,
        max_tokens=model.max_tokens,
        temperature=model.temperature,
        is_active=model.is_active,
    )


def channel_payload(channel: Channel) -> ChannelResponse:
    allowed = parse_allowed_models(channel.allowed_models)
    return ChannelResponse(
        id=channel.id,
        name=channel.name,
        description=channel.description,
        allowed_models=sorted(allowed) if allowed is not None else None,
        is_active=channel.is_active,
    )


def session_payload(chat_session: ChatSession) -> SessionResponse:
    return SessionResponse(
        id=chat_session.id,
        user_id=chat_session.user_id,
        channel_id=chat_session.channel_id,
        model_id=chat_session.model_id,
        title=chat_session.title,
        created_at=_iso(chat_session.created_at),
        updated_at=_iso(chat_session.updated_at),
    )


def message_payload(message: ChatMessage) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        session_id=message.session_id,
        role=message.role,
        content=message.content,
        model_id=message.model_id,
        tokens_used=message.tokens_used,
        created_at=_iso(message.created_at),
    )


def user_payload(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        role=user.role,
        is_active=user.is_active,
        created_at=_iso(user.created_at),
    )


def permission_payload(rule: PermissionRule) -> PermissionResponse:
    return PermissionResponse(
        id=rule.id,
        user_id=rule.user_id,
        channel_id=rule.channel_id,
        model_id=rule.model_id,
        permission_type=rule.permission_type,
        created_at=_iso(rule.created_at),
    )
