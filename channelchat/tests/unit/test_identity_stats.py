from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from channelchat.domain.models import ROLE_ADMIN, ROLE_USER
from channelchat.persistence.db import SessionLocal
from channelchat.services.chat_sessions import SessionManager
from channelchat.services.identity import IdentityClaims, default_role_for, get_or_create_user
from channelchat.services.stats import collect_stats
from channelchat.tests.utils.catalog import create_channel, create_model, create_user, seed_default_catalog


def test_default_role_for_admin_email_is_case_insensitive() -> None:
    assert default_role_for("admin@example.com") == ROLE_ADMIN
    assert default_role_for(" Admin@Example.com ") == ROLE_ADMIN
    assert default_role_for("someone@example.com") == ROLE_USER


@pytest.mark.asyncio
async def test_first_sign_in_provisions_user_once() -> None:
    claims = IdentityClaims(id="u-new", email="new@example.com")
    async with SessionLocal() as session:
        created = await get_or_create_user(session, claims)
    async with SessionLocal() as session:
        again = await get_or_create_user(session, IdentityClaims(id="u-new", email="changed@example.com"))

    assert created.id == again.id == "u-new"
    assert created.role == ROLE_USER
    assert created.is_active is True
    # Later sign-ins never rewrite the stored profile.
    assert again.email == "new@example.com"
    assert again.display_name == "new@example.com"


@pytest.mark.asyncio
async def test_admin_email_provisions_admin() -> None:
    async with SessionLocal() as session:
        user = await get_or_create_user(session, IdentityClaims(id="boss", email="admin@example.com", display_name="Boss"))
    assert user.role == ROLE_ADMIN
    assert user.display_name == "Boss"


@pytest.mark.asyncio
async def test_collect_stats_counts_activity() -> None:
    now = datetime(2026, 6, 1, 15, 0, tzinfo=timezone.utc)
    await create_user("u1")
    await create_user("u2", active=False)
    await seed_default_catalog()
    await create_model("retired", active=False)
    await create_channel("archived", active=False)

    yesterday = {"value": now - timedelta(days=1)}
    manager = SessionManager(time_provider=lambda: yesterday["value"])
    chat_session = await manager.start_new("u1")
    await manager.store.append(session_id=chat_session.id, user_id="u1", role="user", content="old")
    yesterday["value"] = now
    await manager.store.append(session_id=chat_session.id, user_id="u1", role="assistant", content="new")
    await manager.start_new("u1")

    async with SessionLocal() as session:
        stats = await collect_stats(session, now=now)

    assert stats.total_users == 2
    assert stats.active_users == 1
    assert stats.total_sessions == 2
    assert stats.total_messages == 2
    assert stats.today_messages == 1
    assert stats.active_models == 3
    assert stats.active_channels == 3
    assert stats.avg_messages_per_session == 1.0
    assert stats.as_dict()["total_users"] == 2
