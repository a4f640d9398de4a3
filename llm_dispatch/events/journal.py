"""SQLite journal of credential refreshes, shared by every worker process."""

import asyncio
import logging
import os
import time
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

_RefreshRow = tuple[int, str, int, float]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS credential_refresh (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    key         TEXT    NOT NULL,
    pid         INTEGER NOT NULL,
    created_at  REAL    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cr_key ON credential_refresh(key);

CREATE TABLE IF NOT EXISTS credential_lease (
    key         TEXT    PRIMARY KEY,
    holder      TEXT    NOT NULL,
    pid         INTEGER NOT NULL,
    expires_at  REAL    NOT NULL
);
"""

_ACQUIRE_LEASE = """
INSERT INTO credential_lease (key, holder, pid, expires_at) VALUES (?, ?, ?, ?)
ON CONFLICT(key) DO UPDATE SET
    holder = excluded.holder, pid = excluded.pid, expires_at = excluded.expires_at
WHERE credential_lease.expires_at <= ? OR credential_lease.holder = excluded.holder
"""


class RefreshJournal:
    """Append-only log of "credential <key> was refreshed" signals. One connection per instance.

    Each worker polls fetch_since() with the last id it has seen and drops its
    cached copy of every key listed. The same database holds one refresh lease
    per key, so only one worker on the host talks to the token endpoint at a
    time; a lease left behind by a crashed worker lapses after its ttl.
    """

    def __init__(self, db_path: Path, busy_timeout: int = 5000) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(str(self._db_path))
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute(f"PRAGMA busy_timeout={self._busy_timeout}")
            await self._conn.executescript(_SCHEMA)
            await self._conn.commit()
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def publish(self, key: str) -> int:
        """Record a refresh of key and return the row id."""
        async with self._write_lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                "INSERT INTO credential_refresh (key, pid, created_at) VALUES (?, ?, ?)",
                (key, os.getpid(), time.time()),
            )
            await conn.commit()
        logger.debug("Published refresh of %s (row %s)", key, cursor.lastrowid)
        return cursor.lastrowid or 0

    async def fetch_since(self, last_id: int = 0, limit: int = 100) -> list[_RefreshRow]:
        """Rows with id > last_id as (id, key, pid, created_at), oldest first."""
        conn = await self._ensure_conn()
        cursor = await conn.execute(
            """
            SELECT id, key, pid, created_at
            FROM credential_refresh
            WHERE id > ?
            ORDER BY id
            LIMIT ?
            """,
            (last_id, limit),
        )
        rows = await cursor.fetchall()
        return [(row[0], row[1], row[2], row[3]) for row in rows]

    async def latest_id(self) -> int:
        conn = await self._ensure_conn()
        cursor = await conn.execute("SELECT COALESCE(MAX(id), 0) FROM credential_refresh")
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def acquire_lease(self, key: str, holder: str, ttl: float = 30.0) -> bool:
        """Take (or renew) the refresh lease on key. False while another holder's lease is live."""
        now = time.time()
        async with self._write_lock:
            conn = await self._ensure_conn()
            await conn.execute(_ACQUIRE_LEASE, (key, holder, os.getpid(), now + ttl, now))
            cursor = await conn.execute("SELECT holder FROM credential_lease WHERE key = ?", (key,))
            row = await cursor.fetchone()
            await conn.commit()
        return row is not None and row[0] == holder

    async def release_lease(self, key: str, holder: str) -> None:
        async with self._write_lock:
            conn = await self._ensure_conn()
            await conn.execute("DELETE FROM credential_lease WHERE key = ? AND holder = ?", (key, holder))
            await conn.commit()
