"""SQLite persistence for Steeple.

The directory tables are shared with the wider site; this module only
layers access helpers on top. All access is non-blocking via aiosqlite.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from steeple.exceptions import StateError


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class Database:
    """Async SQLite database wrapper for Steeple.

    Connections are opened per call. Multi-statement writes go through
    ``transaction()``, which takes the write lock up front so that
    check-then-update sequences cannot interleave.
    """

    def __init__(self, db_path: str | Path):
        self._db_path = str(db_path)

    @property
    def path(self) -> str:
        return self._db_path

    async def close(self) -> None:
        """Close database connections. No-op for aiosqlite (per-query connections)."""
        pass

    async def initialize(self) -> None:
        """Create tables from schema.sql if they don't exist."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        schema_path = Path(__file__).parent / "schema.sql"
        schema = schema_path.read_text()
        try:
            async with aiosqlite.connect(self._db_path) as db:
                # Enable WAL mode for better concurrent read/write performance
                await db.execute("PRAGMA journal_mode=WAL")
                await db.executescript(schema)
                await db.commit()
        except aiosqlite.Error as e:
            raise StateError(f"Cannot initialize database {self._db_path}: {e}") from e

    async def execute(self, sql: str, params: tuple = ()) -> int:
        """Execute a write query and return the affected row count."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(sql, params)
            await db.commit()
            return cursor.rowcount

    async def execute_returning_id(self, sql: str, params: tuple = ()) -> int:
        """Execute an insert and return the lastrowid."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(sql, params)
            await db.commit()
            return cursor.lastrowid

    async def query(self, sql: str, params: tuple = ()) -> list[dict]:
        """Execute a read query and return results as dicts."""
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def query_one(self, sql: str, params: tuple = ()) -> dict | None:
        """Execute a read query and return the first result."""
        results = await self.query(sql, params)
        return results[0] if results else None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection inside ``BEGIN IMMEDIATE``.

        Commits when the block exits normally and rolls back when it raises.
        Rows come back as ``aiosqlite.Row``.
        """
        async with aiosqlite.connect(self._db_path, isolation_level=None) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")

    # --- Users (owned by the login application) ---

    async def upsert_user(self, user_id: str, role: str, email: str | None = None) -> None:
        """Insert or update a human identity record."""
        await self.execute(
            """INSERT INTO users (id, email, role, created_at) VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET role=excluded.role,
               email=COALESCE(excluded.email, users.email)""",
            (user_id, email, role, utc_now_iso()),
        )

    async def get_user(self, user_id: str) -> dict | None:
        return await self.query_one("SELECT * FROM users WHERE id=?", (user_id,))

    # --- Event log ---

    async def insert_event(
        self,
        subject_id: str,
        correlation_id: str,
        event_type: str,
        data: dict,
    ) -> int:
        """Insert an event log entry."""
        return await self.execute_returning_id(
            """INSERT INTO auth_events (subject_id, correlation_id, timestamp, event_type, data)
               VALUES (?, ?, ?, ?, ?)""",
            (subject_id, correlation_id, utc_now_iso(), event_type, json.dumps(data)),
        )

    async def query_events(
        self,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """Query the most recent events, newest first."""
        if event_type:
            return await self.query(
                """SELECT * FROM auth_events WHERE event_type=?
                   ORDER BY id DESC LIMIT ?""",
                (event_type, limit),
            )
        return await self.query(
            "SELECT * FROM auth_events ORDER BY id DESC LIMIT ?",
            (limit,),
        )
