from __future__ import annotations

import pytest

from channelchat.core.errors import ModelNotAllowedError, NoAvailableModelError
from channelchat.domain.models import AIModel, Channel, User
from channelchat.services.catalog import (
    CatalogResolver,
    filter_allowed_models,
    first_available_model,
    parse_allowed_models,
)
from channelchat.tests.utils.catalog import (
    add_permission,
    create_channel,
    create_model,
    create_user,
    seed_default_catalog,
)


def _ids(models: list[AIModel]) -> set[str]:
    return {model.id for model in models}


def test_parse_allowed_models_variants() -> None:
    assert parse_allowed_models(None) is None
    assert parse_allowed_models([]) is None
    assert parse_allowed_models("") is None
    assert parse_allowed_models("not json") is None
    assert parse_allowed_models('{"a": 1}') is None
    assert parse_allowed_models('["gpt-4o", "gpt-4o-mini"]') == frozenset({"gpt-4o", "gpt-4o-mini"})
    assert parse_allowed_models(["gpt-4o", "", 3]) == frozenset({"gpt-4o"})


def test_filter_is_ordered_by_display_name() -> None:
    user = User(id="u1", email="u1@example.com", role="user", is_active=True)
    channel = Channel(id="general", name="General", allowed_models=None, is_active=True)
    models = [
        AIModel(id="b", display_name="Zeta", is_active=True),
        AIModel(id="a", display_name="Alpha", is_active=True),
    ]
    result = filter_allowed_models(user=user, channel=channel, models=models, rules=[])
    assert [model.id for model in result] == ["a", "b"]


def test_first_available_model_prefers_requested() -> None:
    models = [AIModel(id="a", display_name="A"), AIModel(id="b", display_name="B")]
    assert first_available_model(models, "b").id == "b"
    assert first_available_model(models, "missing").id == "a"
    assert first_available_model([], "a") is None


@pytest.mark.asyncio
async def test_empty_allow_list_means_all_active_models() -> None:
    user = await create_user("u1")
    for model_id in ("gpt-4o-mini", "gpt-4o", "claude-3-5-sonnet"):
        await create_model(model_id)
    await create_model("retired", active=False)
    await create_channel("open", allowed_models=[])

    resolver = CatalogResolver()
    allowed = await resolver.resolve_allowed_models(user, "open")
    assert _ids(allowed) == {"gpt-4o-mini", "gpt-4o", "claude-3-5-sonnet"}


@pytest.mark.asyncio
async def test_unparsable_allow_list_is_treated_as_open() -> None:
    user = await create_user("u1")
    await create_model("gpt-4o")
    await create_channel("legacy", allowed_models="not json")

    allowed = await CatalogResolver().resolve_allowed_models(user, "legacy")
    assert _ids(allowed) == {"gpt-4o"}


@pytest.mark.asyncio
async def test_result_is_subset_of_channel_scope() -> None:
    user = await create_user("u1")
    await seed_default_catalog()

    allowed = await CatalogResolver().resolve_allowed_models(user, "coding")
    assert _ids(allowed) == {"gpt-4o", "claude-3-5-sonnet"}


@pytest.mark.asyncio
async def test_model_deny_wins_over_allow() -> None:
    user = await create_user("u1")
    await seed_default_catalog()
    await add_permission("u1", "allow", model_id="gpt-4o")
    await add_permission("u1", "deny", model_id="gpt-4o")

    allowed = await CatalogResolver().resolve_allowed_models(user, "general")
    assert "gpt-4o" not in _ids(allowed)
    assert _ids(allowed) == {"gpt-4o-mini", "claude-3-5-sonnet"}


@pytest.mark.asyncio
async def test_model_allow_extends_channel_scope_but_not_inactive_models() -> None:
    user = await create_user("u1")
    await seed_default_catalog()
    await create_model("retired", active=False)
    await add_permission("u1", "allow", model_id="gpt-4o-mini")
    await add_permission("u1", "allow", model_id="retired")

    allowed = await CatalogResolver().resolve_allowed_models(user, "coding")
    assert _ids(allowed) == {"gpt-4o-mini", "gpt-4o", "claude-3-5-sonnet"}


@pytest.mark.asyncio
async def test_channel_deny_empties_result_and_hides_channel() -> None:
    user = await create_user("u1")
    await seed_default_catalog()
    await add_permission("u1", "deny", channel_id="coding")

    resolver = CatalogResolver()
    assert await resolver.resolve_allowed_models(user, "coding") == []
    visible = {channel.id for channel in await resolver.visible_channels(user)}
    assert visible == {"general", "creative"}


@pytest.mark.asyncio
async def test_deleted_model_in_allow_list_is_ignored() -> None:
    user = await create_user("u1")
    await create_model("gpt-4o")
    await create_channel("general", allowed_models=["gpt-4o", "deleted-model"])

    allowed = await CatalogResolver().resolve_allowed_models(user, "general")
    assert _ids(allowed) == {"gpt-4o"}


@pytest.mark.asyncio
async def test_inactive_user_and_channel_resolve_to_nothing() -> None:
    inactive_user = await create_user("u-off", active=False)
    user = await create_user("u1")
    await seed_default_catalog()
    await create_channel("archived", allowed_models=None, active=False)

    resolver = CatalogResolver()
    assert await resolver.resolve_allowed_models(inactive_user, "general") == []
    assert await resolver.resolve_allowed_models(user, "archived") == []
    assert await resolver.resolve_allowed_models(user, "no-such-channel") == []


@pytest.mark.asyncio
async def test_check_model_errors() -> None:
    user = await create_user("u1")
    await seed_default_catalog()
    await add_permission("u1", "deny", channel_id="creative")

    resolver = CatalogResolver()
    model = await resolver.check_model(user, "general", "gpt-4o")
    assert model.id == "gpt-4o"
    with pytest.raises(ModelNotAllowedError):
        await resolver.check_model(user, "coding", "gpt-4o-mini")
    with pytest.raises(NoAvailableModelError):
        await resolver.check_model(user, "creative", "gpt-4o")
