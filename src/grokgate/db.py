"""
Key-value persistence for settings rows.

One table, keyed by a short settings name:

    settings(key TEXT PRIMARY KEY, value TEXT, updated_at INTEGER)

`value` is UTF-8 JSON text and `updated_at` is a millisecond UNIX timestamp.
Upserts create the row for a key if absent, otherwise overwrite its value and
timestamp; a key never has more than one row.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional, Protocol

import aiosqlite

logger = logging.getLogger(__name__)

# ── Paths / time ──────────────────────────────────────────────────────────────

DEFAULT_DB_FILE = Path.home() / ".config" / "grokgate" / "settings.db"

# Timestamps are displayed in UTC+8, as the upstream service reports them
DISPLAY_TZ = timezone(timedelta(hours=8))

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);
"""

_UPSERT_SQL = (
    "INSERT INTO settings(key, value, updated_at) VALUES(?, ?, ?) "
    "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at"
)


def now_ms() -> int:
    return int(time.time() * 1000)


def format_ms(ms: int) -> str:
    """Render a millisecond timestamp as `YYYY-MM-DD HH:MM:SS` in UTC+8."""
    moment = datetime.fromtimestamp(ms / 1000, tz=timezone.utc).astimezone(DISPLAY_TZ)
    return moment.strftime("%Y-%m-%d %H:%M:%S")


@dataclass(frozen=True)
class SettingsRow:
    key: str
    value: str
    updated_at: int


class SettingsRepository(Protocol):
    """What the settings store needs from a backend: point lookup and upsert."""

    async def first(self, key: str) -> Optional[SettingsRow]:
        ...

    async def upsert(self, rows: Iterable[SettingsRow]) -> None:
        ...


# ── Backends ──────────────────────────────────────────────────────────────────


class MemorySettingsRepository:
    """Dict-backed repository; rows vanish with the process."""

    def __init__(self, rows: Optional[Iterable[SettingsRow]] = None) -> None:
        self._rows: dict[str, SettingsRow] = {row.key: row for row in rows or ()}
        self.write_count = 0

    async def first(self, key: str) -> Optional[SettingsRow]:
        return self._rows.get(key)

    async def upsert(self, rows: Iterable[SettingsRow]) -> None:
        for row in rows:
            self._rows[row.key] = row
            self.write_count += 1


class SQLiteSettingsRepository:
    """
    aiosqlite-backed repository.

    Use as an async context manager, or call open()/close() explicitly.
    A single upsert() call commits all of its rows together.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_FILE) -> None:
        self._db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    async def open(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA_SQL)
        await self._db.commit()
        logger.debug("Opened settings database at %s", self._db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "SQLiteSettingsRepository":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("settings database is not open")
        return self._db

    async def first(self, key: str) -> Optional[SettingsRow]:
        async with self._conn().execute(
            "SELECT key, value, updated_at FROM settings WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return SettingsRow(key=row["key"], value=row["value"], updated_at=row["updated_at"])

    async def upsert(self, rows: Iterable[SettingsRow]) -> None:
        db = self._conn()
        try:
            for row in rows:
                await db.execute(_UPSERT_SQL, (row.key, row.value, row.updated_at))
            await db.commit()
        except Exception:
            await db.rollback()
            raise
