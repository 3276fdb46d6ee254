from __future__ import annotations

import os
import tempfile

# The engine binds to DATABASE_URL at import time, so point it at SQLite first.
_DB_DIR = tempfile.mkdtemp(prefix="channelchat-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'channelchat.db')}"
os.environ.setdefault("LLM_PROVIDER", "fake")

import pytest

from channelchat.apps.api.deps import reset_service_singletons
from channelchat.core.config import get_settings
from channelchat.persistence.db import drop_models, engine, init_models


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from empty tables and process-wide services.
    get_settings.cache_clear()
    reset_service_singletons()
    await init_models()
    yield
    await drop_models()
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()
    reset_service_singletons()
    get_settings.cache_clear()
