"""Time-boxed cache of serialised reports keyed by (user id, canonical range).

Values are opaque JSON strings. Entries older than the TTL read as missing;
concurrent writers overwrite each other.
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol

import aiosqlite

from .config import settings

Clock = Callable[[], float]


class ReportCache(Protocol):
    async def get(self, user_id: str, time_range: str) -> Optional[str]: ...

    async def set(self, user_id: str, time_range: str, value: str) -> None: ...


@dataclass
class CacheEntry:
    value: str
    inserted_at: float


class MemoryReportCache:
    """In-process cache, mostly for tests and single-shot CLI runs."""

    def __init__(self, ttl_seconds: float, clock: Clock = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], CacheEntry] = {}

    def _fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.inserted_at < self.ttl_seconds

    async def get(self, user_id: str, time_range: str) -> Optional[str]:
        entry = self._entries.get((user_id, time_range))
        if entry is None or not self._fresh(entry):
            return None
        return entry.value

    async def set(self, user_id: str, time_range: str, value: str) -> None:
        self._entries[(user_id, time_range)] = CacheEntry(value, self._clock())

    async def invalidate(self, user_id: str, time_range: Optional[str] = None) -> None:
        for key in list(self._entries):
            if key[0] == user_id and (time_range is None or key[1] == time_range):
                del self._entries[key]

    async def count(self) -> int:
        return sum(1 for entry in self._entries.values() if self._fresh(entry))


class SqliteReportCache:
    """Report cache persisted in SQLite so it survives restarts."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        ttl_seconds: Optional[float] = None,
        clock: Clock = time.time,
    ):
        self.db_path = db_path or settings.cache_path_resolved
        if ttl_seconds is None:
            ttl_seconds = settings.stats_cache_ttl_minutes * 60
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Connect to the database and create tables if needed."""
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._create_tables()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("Report cache not connected")
        return self._connection

    async def _create_tables(self) -> None:
        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS report_cache (
                user_id TEXT NOT NULL,
                time_range TEXT NOT NULL,
                payload TEXT NOT NULL,
                inserted_at REAL NOT NULL,
                PRIMARY KEY (user_id, time_range)
            )
        """)
        await self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_report_cache_inserted ON report_cache(inserted_at)"
        )
        await self.conn.commit()

    def _cutoff(self) -> float:
        return self._clock() - self.ttl_seconds

    async def get(self, user_id: str, time_range: str) -> Optional[str]:
        cursor = await self.conn.execute(
            """
            SELECT payload FROM report_cache
            WHERE user_id = ? AND time_range = ? AND inserted_at > ?
            """,
            (user_id, time_range, self._cutoff()),
        )
        row = await cursor.fetchone()
        return row["payload"] if row else None

    async def set(self, user_id: str, time_range: str, value: str) -> None:
        await self.conn.execute(
            """
            INSERT INTO report_cache (user_id, time_range, payload, inserted_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, time_range) DO UPDATE SET
                payload = excluded.payload,
                inserted_at = excluded.inserted_at
            """,
            (user_id, time_range, value, self._clock()),
        )
        await self.conn.commit()

    async def invalidate(self, user_id: str, time_range: Optional[str] = None) -> None:
        if time_range is None:
            await self.conn.execute("DELETE FROM report_cache WHERE user_id = ?", (user_id,))
        else:
            await self.conn.execute(
                "DELETE FROM report_cache WHERE user_id = ? AND time_range = ?",
                (user_id, time_range),
            )
        await self.conn.commit()

    async def prune_expired(self) -> int:
        """Delete stale entries; returns how many were removed."""
        cursor = await self.conn.execute(
            "DELETE FROM report_cache WHERE inserted_at <= ?", (self._cutoff(),)
        )
        await self.conn.commit()
        return cursor.rowcount

    async def count(self) -> int:
        cursor = await self.conn.execute(
            "SELECT COUNT(*) as count FROM report_cache WHERE inserted_at > ?",
            (self._cutoff(),),
        )
        row = await cursor.fetchone()
        return row["count"]


# Global cache instance
report_cache = SqliteReportCache()
