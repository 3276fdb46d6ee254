from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from channelchat.apps.api.deps import get_catalog_resolver, get_current_user
from channelchat.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from channelchat.apps.api.response import SuccessEnvelope, success_response
from channelchat.apps.api.schemas import ChannelResponse, ModelResponse, channel_payload, model_payload
from channelchat.domain.models import User
from channelchat.services.catalog import CatalogResolver

router = APIRouter(tags=["catalog"], responses=DEFAULT_ERROR_RESPONSES)


class ChannelModelsResponse(BaseModel):
    channel_id: str
    models: list[ModelResponse]
    # False when nothing is selectable; clients render a disabled picker.
    available: bool


@router.get("/channels", response_model=SuccessEnvelope[list[ChannelResponse]])
async def list_channels(
    request: Request,
    user: User = Depends(get_current_user),
    resolver: CatalogResolver = Depends(get_catalog_resolver),
) -> dict:
    channels = await resolver.visible_channels(user)
    return success_response(
        request=request,
        data=[channel_payload(channel).model_dump(mode="json") for channel in channels],
    )


@router.get("/channels/{channel_id}/models", response_model=SuccessEnvelope[ChannelModelsResponse])
async def list_channel_models(
    channel_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    resolver: CatalogResolver = Depends(get_catalog_resolver),
) -> dict:
    # An empty result is a valid answer, not an error.
    models = await resolver.resolve_allowed_models(user, channel_id)
    payload = ChannelModelsResponse(
        channel_id=channel_id,
        models=[model_payload(model) for model in models],
        available=bool(models),
    )
    return success_response(request=request, data=payload)
