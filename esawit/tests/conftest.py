from __future__ import annotations

from pathlib import Path

import pytest

from esawit.core.config import get_settings
from esawit.persistence.db import Database
from esawit.tests.utils.fakes import FakeRedis


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Keep monkeypatched env settings from leaking across tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def database(tmp_path: Path) -> Database:
    # Each test gets its own SQLite file with the full schema.
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'esawit.db'}")
    await db.connect()
    await db.create_all()
    yield db
    await db.disconnect()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
