"""Relational backend on SQLite via aiosqlite.

Two tables, both keyed by ``tenant_id``::

    tenants      (tenant_id, owner_id, enrollment_seed, status, last_activity_at)
    credentials  (tenant_id, payload, updated_at)

A :class:`Database` owns one long-lived connection.  Each write is a
single statement followed by ``COMMIT`` under a lock, so concurrent
tenant tasks never interleave inside another task's transaction, and a
committed save is visible to every process that opens the same file.

Timestamps are stored as ISO 8601 text with offset.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

import aiosqlite

from bothost._errors import StoreUnavailable

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS tenants (
    tenant_id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    enrollment_seed TEXT NOT NULL,
    status TEXT NOT NULL,
    last_activity_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS credentials (
    tenant_id TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class Database:
    """Async SQLite handle shared by the SQL credential store and registry.

    Call :meth:`open` before use and :meth:`close` on shutdown.  Backend
    errors are re-raised as :class:`StoreUnavailable`.
    """

    def __init__(self, path: str) -> None:
        self.path = path or ":memory:"
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = await aiosqlite.connect(self.path)
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.executescript(SCHEMA)
            await self._conn.commit()
        except aiosqlite.Error as exc:
            raise StoreUnavailable(f"Cannot open database {self.path}: {exc}") from exc
        logger.info("Opened SQLite storage at %s", self.path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreUnavailable("Database is not open")
        return self._conn

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        """Execute and commit one statement, returning the affected row count."""
        async with self._lock:
            conn = self._connection()
            try:
                cursor = await conn.execute(query, params or {})
                await conn.commit()
            except aiosqlite.Error as exc:
                await self._rollback(conn)
                raise StoreUnavailable(str(exc)) from exc
            return cursor.rowcount

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        rows = await self.fetch_all(query, params)
        return rows[0] if rows else None

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute query, return all rows as list of dicts."""
        async with self._lock:
            conn = self._connection()
            try:
                async with conn.execute(query, params or {}) as cursor:
                    rows: Sequence[Sequence[Any]] = await cursor.fetchall()
                    cols = [c[0] for c in cursor.description]
            except aiosqlite.Error as exc:
                raise StoreUnavailable(str(exc)) from exc
            return [dict(zip(cols, row, strict=True)) for row in rows]

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except aiosqlite.Error:
            logger.exception("Rollback failed")
