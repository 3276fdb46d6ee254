from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from channelchat.apps.api.deps import get_db, require_admin
from channelchat.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from channelchat.apps.api.response import SuccessEnvelope, success_response
from channelchat.apps.api.schemas import (
    ChannelResponse,
    ModelResponse,
    PermissionResponse,
    UserResponse,
    channel_payload,
    model_payload,
    permission_payload,
    user_payload,
)
from channelchat.domain.clock import utc_now
from channelchat.domain.models import ROLE_ADMIN, ROLE_USER, User
from channelchat.persistence.repos import catalog as catalog_repo
from channelchat.persistence.repos import permissions as permissions_repo
from channelchat.persistence.repos import users as users_repo
from channelchat.services.permissions import validate_rule_shape
from channelchat.services.stats import collect_stats

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)


class ModelCreateRequest(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    provider: str = Field(min_length=1)
    model_id: str = Field(min_length=1)
    max_tokens: int = Field(default=4000, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    is_active: bool = True


class ModelUpdateRequest(BaseModel):
    name: str | None = None
    display_name: str | None = None
    provider: str | None = None
    model_id: str | None = None
    max_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    is_active: bool | None = None


class ChannelCreateRequest(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    allowed_models: list[str] | None = None
    is_active: bool = True


class ChannelUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    # Explicit null clears the allow-list, making every active model eligible.
    allowed_models: list[str] | None = None
    is_active: bool | None = None


class PermissionCreateRequest(BaseModel):
    user_id: str
    channel_id: str | None = None
    model_id: str | None = None
    permission_type: str


class UserUpdateRequest(BaseModel):
    display_name: str | None = None
    role: str | None = None
    is_active: bool | None = None


class DeleteResponse(BaseModel):
    id: str
    deleted: bool


class StatsResponse(BaseModel):
    total_users: int
    active_users: int
    total_messages: int
    total_sessions: int
    active_models: int
    active_channels: int
    today_messages: int
    avg_messages_per_session: float


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"code": code, "message": message})


def _conflict(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"code": "CONFLICT", "message": message})


async def _commit_or_conflict(db: AsyncSession, message: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _conflict(message) from exc


async def _check_allowed_models(db: AsyncSession, allowed_models: list[str] | None) -> None:
    # Allow-lists may only name models the catalog knows, active or not.
    if not allowed_models:
        return
    known = {model.id for model in await catalog_repo.list_models(db, include_inactive=True)}
    unknown = sorted(set(allowed_models) - known)
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "code": "ALLOWED_MODELS_INVALID",
                "message": "Allow-list names unknown models",
                "unknown_models": unknown,
            },
        )


@router.get("/models", response_model=SuccessEnvelope[list[ModelResponse]])
async def list_models(
    request: Request,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    models = await catalog_repo.list_models(db, include_inactive=True)
    return success_response(request=request, data=[model_payload(m).model_dump(mode="json") for m in models])


@router.post("/models", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[ModelResponse])
async def create_model(
    request: Request,
    payload: ModelCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if await catalog_repo.get_model(db, payload.id) is not None:
        raise _conflict(f"Model {payload.id} already exists")
    model = await catalog_repo.add_model(
        db,
        model_pk=payload.id,
        name=payload.name,
        display_name=payload.display_name,
        provider=payload.provider,
        model_id=payload.model_id,
        max_tokens=payload.max_tokens,
        temperature=payload.temperature,
        is_active=payload.is_active,
    )
    await _commit_or_conflict(db, f"Model {payload.id} already exists")
    logger.info("admin_model_created admin_id=%s model_id=%s", admin.id, model.id)
    return success_response(request=request, data=model_payload(model))


@router.patch("/models/{model_pk}", response_model=SuccessEnvelope[ModelResponse])
async def update_model(
    model_pk: str,
    request: Request,
    payload: ModelUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    model = await catalog_repo.get_model(db, model_pk)
    if model is None:
        raise _not_found("MODEL_NOT_FOUND", "Model not found")
    # Deactivation hides a model from resolution; sessions and messages keep their reference.
    for field, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(model, field, value)
    await db.commit()
    logger.info("admin_model_updated admin_id=%s model_id=%s", admin.id, model.id)
    return success_response(request=request, data=model_payload(model))


@router.get("/channels", response_model=SuccessEnvelope[list[ChannelResponse]])
async def list_channels(
    request: Request,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    channels = await catalog_repo.list_channels(db, include_inactive=True)
    return success_response(request=request, data=[channel_payload(c).model_dump(mode="json") for c in channels])


@router.post("/channels", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[ChannelResponse])
async def create_channel(
    request: Request,
    payload: ChannelCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if await catalog_repo.get_channel(db, payload.id) is not None:
        raise _conflict(f"Channel {payload.id} already exists")
    await _check_allowed_models(db, payload.allowed_models)
    channel = await catalog_repo.add_channel(
        db,
        channel_id=payload.id,
        name=payload.name,
        description=payload.description,
        allowed_models=payload.allowed_models,
        is_active=payload.is_active,
    )
    await _commit_or_conflict(db, f"Channel {payload.id} already exists")
    logger.info("admin_channel_created admin_id=%s channel_id=%s", admin.id, channel.id)
    return success_response(request=request, data=channel_payload(channel))


@router.patch("/channels/{channel_id}", response_model=SuccessEnvelope[ChannelResponse])
async def update_channel(
    channel_id: str,
    request: Request,
    payload: ChannelUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    channel = await catalog_repo.get_channel(db, channel_id)
    if channel is None:
        raise _not_found("CHANNEL_NOT_FOUND", "Channel not found")
    changes = payload.model_dump(exclude_unset=True)
    if "allowed_models" in changes:
        await _check_allowed_models(db, changes["allowed_models"])
    for field, value in changes.items():
        if value is None and field != "allowed_models":
            continue
        setattr(channel, field, value)
    await db.commit()
    logger.info("admin_channel_updated admin_id=%s channel_id=%s", admin.id, channel.id)
    return success_response(request=request, data=channel_payload(channel))


@router.get("/permissions", response_model=SuccessEnvelope[list[PermissionResponse]])
async def list_permissions(
    request: Request,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rules = await permissions_repo.list_rules(db)
    return success_response(request=request, data=[permission_payload(r).model_dump(mode="json") for r in rules])


@router.post(
    "/permissions",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[PermissionResponse],
)
async def create_permission(
    request: Request,
    payload: PermissionCreateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Rules are immutable; change one by deleting it and adding a replacement.
    validate_rule_shape(
        channel_id=payload.channel_id,
        model_id=payload.model_id,
        permission_type=payload.permission_type,
    )
    if await users_repo.get_user(db, payload.user_id) is None:
        raise _not_found("USER_NOT_FOUND", "User not found")
    rule = await permissions_repo.add_rule(
        db,
        user_id=payload.user_id,
        permission_type=payload.permission_type,
        channel_id=payload.channel_id,
        model_id=payload.model_id,
    )
    await db.commit()
    logger.info(
        "admin_permission_created admin_id=%s rule_id=%s user_id=%s type=%s",
        admin.id,
        rule.id,
        rule.user_id,
        rule.permission_type,
    )
    return success_response(request=request, data=permission_payload(rule))


@router.delete("/permissions/{rule_id}", response_model=SuccessEnvelope[DeleteResponse])
async def delete_permission(
    rule_id: str,
    request: Request,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rule = await permissions_repo.delete_rule(db, rule_id)
    if rule is None:
        raise _not_found("PERMISSION_NOT_FOUND", "Permission rule not found")
    await db.commit()
    logger.info("admin_permission_deleted admin_id=%s rule_id=%s", admin.id, rule_id)
    return success_response(request=request, data=DeleteResponse(id=rule_id, deleted=True))


@router.get("/users", response_model=SuccessEnvelope[list[UserResponse]])
async def list_users(
    request: Request,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    users = await users_repo.list_users(db)
    return success_response(request=request, data=[user_payload(u).model_dump(mode="json") for u in users])


@router.patch("/users/{user_id}", response_model=SuccessEnvelope[UserResponse])
async def update_user(
    user_id: str,
    request: Request,
    payload: UserUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await users_repo.get_user(db, user_id)
    if user is None:
        raise _not_found("USER_NOT_FOUND", "User not found")
    if payload.role is not None and payload.role not in {ROLE_USER, ROLE_ADMIN}:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "VALIDATION_ERROR", "message": f"Unsupported role: {payload.role}"},
        )
    # Users are deactivated, never deleted.
    for field, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(user, field, value)
    await db.commit()
    logger.info("admin_user_updated admin_id=%s user_id=%s", admin.id, user.id)
    return success_response(request=request, data=user_payload(user))


@router.get("/stats", response_model=SuccessEnvelope[StatsResponse])
async def get_stats(
    request: Request,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    stats = await collect_stats(db, now=utc_now())
    return success_response(request=request, data=StatsResponse(**stats.as_dict()))
