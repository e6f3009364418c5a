"""
Tests for db.py — SQLite repository, upsert semantics and timestamps.
"""

import json
from datetime import datetime, timezone

import pytest

from grokgate.db import SettingsRow, SQLiteSettingsRepository, format_ms, now_ms
from grokgate.settings import get_settings, save_settings


@pytest.mark.asyncio
async def test_first_returns_none_for_missing_key(sqlite_repo):
    assert await sqlite_repo.first("global") is None


@pytest.mark.asyncio
async def test_upsert_inserts_then_overwrites(sqlite_repo):
    await sqlite_repo.upsert([SettingsRow("grok", '{"api_key": "a"}', 1)])
    await sqlite_repo.upsert([SettingsRow("grok", '{"api_key": "b"}', 2)])

    row = await sqlite_repo.first("grok")
    assert row == SettingsRow("grok", '{"api_key": "b"}', 2)

    async with sqlite_repo._conn().execute("SELECT COUNT(*) FROM settings") as cursor:
        (count,) = await cursor.fetchone()
    assert count == 1


@pytest.mark.asyncio
async def test_rows_survive_reopen(tmp_path):
    db_path = tmp_path / "nested" / "settings.db"
    async with SQLiteSettingsRepository(db_path) as repo:
        await save_settings(repo, {"grok_config": {"max_retry": 1, "cf_clearance": "cf_clearance=z"}})

    async with SQLiteSettingsRepository(db_path) as repo:
        bundle = await get_settings(repo)
        raw = await repo.first("grok")

    assert bundle.grok.max_retry == 1
    assert bundle.grok.cf_clearance == "z"
    assert json.loads(raw.value)["cf_clearance"] == "z"


@pytest.mark.asyncio
async def test_closed_repository_refuses_queries(tmp_path):
    repo = SQLiteSettingsRepository(tmp_path / "settings.db")
    with pytest.raises(RuntimeError):
        await repo.first("global")


def test_now_ms_is_milliseconds():
    stamp = now_ms()
    assert abs(stamp / 1000 - datetime.now(timezone.utc).timestamp()) < 5


def test_format_ms_renders_utc_plus_8():
    stamp = int(datetime(2026, 2, 27, 23, 0, tzinfo=timezone.utc).timestamp() * 1000)
    assert format_ms(stamp) == "2026-02-28 07:00:00"
