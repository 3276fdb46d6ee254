from __future__ import annotations

import asyncio
import gc
from datetime import datetime, timedelta, timezone

import pytest

from channelchat.core.errors import ClearNotConfirmedError, SessionNotFoundError
from channelchat.services.chat_sessions import SessionManager
from channelchat.tests.utils.catalog import create_user, seed_default_catalog


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(clock: FrozenClock) -> None:
    await create_user("u1")
    await seed_default_catalog()
    manager = SessionManager(time_provider=clock)

    first = await manager.get_or_create_current("u1")
    second = await manager.get_or_create_current("u1")

    assert first.id == second.id
    assert first.channel_id == "general"
    assert first.model_id == "gpt-4o-mini"
    assert first.title == "New chat"
    assert len(await manager.list_sessions("u1")) == 1


@pytest.mark.asyncio
async def test_current_session_is_most_recently_updated(clock: FrozenClock) -> None:
    await create_user("u1")
    await seed_default_catalog()
    manager = SessionManager(time_provider=clock)

    older = await manager.start_new("u1")
    clock.advance(10)
    newer = await manager.start_new("u1")
    assert (await manager.get_or_create_current("u1")).id == newer.id

    # Appending to the older session makes it current again.
    clock.advance(10)
    await manager.store.append(session_id=older.id, user_id="u1", role="user", content="back again")
    assert (await manager.get_or_create_current("u1")).id == older.id
    assert [item.id for item in await manager.list_sessions("u1")] == [older.id, newer.id]


@pytest.mark.asyncio
async def test_start_new_wins_even_when_clock_has_not_advanced(clock: FrozenClock) -> None:
    await create_user("u1")
    await seed_default_catalog()
    manager = SessionManager(time_provider=clock)

    first = await manager.start_new("u1")
    second = await manager.start_new("u1", channel_id="coding", model_id="gpt-4o", title="Refactor")

    current = await manager.get_or_create_current("u1")
    assert current.id == second.id
    assert current.id != first.id
    assert current.title == "Refactor"


@pytest.mark.asyncio
async def test_concurrent_cold_start_creates_one_session(clock: FrozenClock) -> None:
    await create_user("u1")
    await seed_default_catalog()
    manager = SessionManager(time_provider=clock)

    results = await asyncio.gather(*(manager.get_or_create_current("u1") for _ in range(5)))

    assert len({item.id for item in results}) == 1
    assert len(await manager.list_sessions("u1")) == 1
    # Per-user creation locks are released once no call holds them.
    gc.collect()
    assert "u1" not in manager._locks


@pytest.mark.asyncio
async def test_load_transcript_enforces_ownership(clock: FrozenClock) -> None:
    await create_user("u1")
    await create_user("u2")
    await seed_default_catalog()
    manager = SessionManager(time_provider=clock)

    owned = await manager.get_or_create_current("u1")
    await manager.store.append(session_id=owned.id, user_id="u1", role="user", content="hello")
    clock.advance(1)
    await manager.store.append(session_id=owned.id, user_id="u1", role="assistant", content="hi")

    chat_session, messages = await manager.load_transcript("u1", owned.id)
    assert chat_session.id == owned.id
    assert [(m.role, m.content) for m in messages] == [("user", "hello"), ("assistant", "hi")]
    with pytest.raises(SessionNotFoundError):
        await manager.load_transcript("u2", owned.id)
    with pytest.raises(SessionNotFoundError):
        await manager.get_owned("u1", "session_missing")


@pytest.mark.asyncio
async def test_clear_requires_confirmation(clock: FrozenClock) -> None:
    await create_user("u1")
    await seed_default_catalog()
    manager = SessionManager(time_provider=clock)
    chat_session = await manager.get_or_create_current("u1")
    await manager.store.append(session_id=chat_session.id, user_id="u1", role="user", content="hello")

    with pytest.raises(ClearNotConfirmedError):
        await manager.clear_session("u1", chat_session.id, confirm=False)
    assert len(await manager.store.list_by_session(chat_session.id)) == 1

    deleted = await manager.clear_session("u1", chat_session.id, confirm=True)
    assert deleted == 1
    assert await manager.store.list_by_session(chat_session.id) == []
