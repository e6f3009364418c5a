"""
Shared pytest fixtures.

Key fixtures:
  `memory_repo` — an empty in-memory settings repository per test.
  `sqlite_repo` — an opened SQLite repository in a fresh temp directory.
  `recorded_sleeps` — replaces the retry executor's sleep so retry tests run
                      instantly; yields the list of requested delays (seconds).
"""

import pytest
import pytest_asyncio

import grokgate.retry as retry_module
from grokgate.db import MemorySettingsRepository, SQLiteSettingsRepository


@pytest.fixture
def memory_repo():
    return MemorySettingsRepository()


@pytest_asyncio.fixture
async def sqlite_repo(tmp_path):
    repo = SQLiteSettingsRepository(tmp_path / "data" / "settings.db")
    await repo.open()
    yield repo
    await repo.close()


@pytest.fixture
def recorded_sleeps(monkeypatch):
    delays: list[float] = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(retry_module, "_sleep", fake_sleep)
    return delays
