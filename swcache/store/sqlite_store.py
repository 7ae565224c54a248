"""
SQLite Store - persistent generation stores (aiosqlite)
SQLite 持久化存储 - generation 存储在进程重启后依然可用

This module provides:
    - One table row per generation store (creation order preserved by id)
    - One row per (store, request key) entry, overwritten on put
    - A metadata row holding the current generation name
    - WAL mode for concurrent readers

Every operation awaits the database, so no call blocks the event loop.
"""

import json
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import aiosqlite

from log import log

from ..errors import StoreError
from ..models import CacheRequest, ResponseSnapshot
from .store_interface import ICache, ICacheStorage


DEFAULT_DB_PATH = os.path.join("data", "offline_cache.db")

CURRENT_GENERATION_KEY = "current_generation"


class SQLiteCache(ICache):
    """Single generation store backed by the shared SQLite connection"""

    def __init__(self, storage: "SQLiteCacheStorage", name: str):
        self._storage = storage
        self.name = name

    async def match(self, request: CacheRequest) -> Optional[ResponseSnapshot]:
        return await self._storage.match(request, cache_name=self.name)

    async def put(self, request: CacheRequest, response: ResponseSnapshot) -> None:
        await self._storage._put(self.name, request, response)

    async def keys(self) -> List[str]:
        async with self._storage._guard("list keys") as db:
            async with db.execute(
                "SELECT cache_key FROM cache_entries WHERE cache_name = ? ORDER BY id",
                (self.name,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [row["cache_key"] for row in rows]


class SQLiteCacheStorage(ICacheStorage):
    """
    SQLite-based implementation of ICacheStorage
    基于 SQLite 的 generation 存储

    Usage:
        storage = SQLiteCacheStorage("data/offline_cache.db")
        await storage.connect()
        cache = await storage.open("saudi-music-db-v1")
        ...
        await storage.close()
    """

    CREATE_CACHES_SQL = """
        CREATE TABLE IF NOT EXISTS caches (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT UNIQUE NOT NULL,
            created_at TEXT NOT NULL
        )
    """

    CREATE_ENTRIES_SQL = """
        CREATE TABLE IF NOT EXISTS cache_entries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            cache_name TEXT NOT NULL REFERENCES caches(name) ON DELETE CASCADE,
            cache_key TEXT NOT NULL,
            url TEXT NOT NULL,
            status INTEGER NOT NULL,
            status_text TEXT DEFAULT '',
            headers TEXT DEFAULT '[]',
            body BLOB,
            response_type TEXT DEFAULT 'basic',
            captured_at REAL,
            UNIQUE(cache_name, cache_key)
        )
    """

    CREATE_META_SQL = """
        CREATE TABLE IF NOT EXISTS storage_meta (
            key TEXT PRIMARY KEY,
            value TEXT
        )
    """

    CREATE_INDEXES_SQL = [
        "CREATE INDEX IF NOT EXISTS idx_entries_key ON cache_entries(cache_key)",
        "CREATE INDEX IF NOT EXISTS idx_entries_cache ON cache_entries(cache_name)",
    ]

    def __init__(self, db_path: Optional[str] = None, wal_mode: bool = True):
        super().__init__()
        self.db_path = db_path or DEFAULT_DB_PATH
        self.wal_mode = wal_mode
        self._db: Optional[aiosqlite.Connection] = None

    async def connect(self) -> "SQLiteCacheStorage":
        """Open the connection and create the schema (idempotent)"""
        if self._db is not None:
            return self

        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
            log.info(f"[STORE] Created database directory: {db_dir}")

        try:
            db = await aiosqlite.connect(self.db_path)
            db.row_factory = aiosqlite.Row
            if self.wal_mode:
                await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")
            await db.execute("PRAGMA foreign_keys=ON")

            await db.execute(self.CREATE_CACHES_SQL)
            await db.execute(self.CREATE_ENTRIES_SQL)
            await db.execute(self.CREATE_META_SQL)
            for sql in self.CREATE_INDEXES_SQL:
                await db.execute(sql)
            await db.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"Cannot open store database {self.db_path}: {e}") from e

        self._db = db
        log.info(f"[STORE] SQLite store ready: {self.db_path}")
        return self

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    @asynccontextmanager
    async def _guard(self, operation: str):
        """Yield the connection, converting database errors to StoreError"""
        if self._db is None:
            raise StoreError(f"Store not connected ({operation})")
        try:
            yield self._db
        except aiosqlite.Error as e:
            log.error(f"[STORE] Database error during {operation}: {e}")
            raise StoreError(f"{operation} failed: {e}") from e

    async def _ensure(self, name: str) -> None:
        async with self._guard("open store") as db:
            await db.execute(
                "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)",
                (name, datetime.now().isoformat()),
            )
            await db.commit()

    async def _put(self, name: str, request: CacheRequest, response: ResponseSnapshot) -> None:
        await self._ensure(name)
        async with self._guard("put entry") as db:
            await db.execute(
                """
                INSERT INTO cache_entries
                (cache_name, cache_key, url, status, status_text, headers, body, response_type, captured_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cache_name, cache_key) DO UPDATE SET
                    url = excluded.url,
                    status = excluded.status,
                    status_text = excluded.status_text,
                    headers = excluded.headers,
                    body = excluded.body,
                    response_type = excluded.response_type,
                    captured_at = excluded.captured_at
                """,
                (
                    name,
                    request.cache_key,
                    response.url or request.url,
                    response.status,
                    response.status_text,
                    json.dumps([list(pair) for pair in response.headers]),
                    response.body,
                    response.response_type,
                    response.captured_at,
                ),
            )
            await db.commit()
        self.stats.writes += 1

    @staticmethod
    def _row_to_response(row: aiosqlite.Row) -> ResponseSnapshot:
        headers = tuple((str(k), str(v)) for k, v in json.loads(row["headers"] or "[]"))
        return ResponseSnapshot(
            status=row["status"],
            status_text=row["status_text"] or "",
            headers=headers,
            body=row["body"] or b"",
            url=row["url"],
            response_type=row["response_type"] or "basic",
            captured_at=row["captured_at"],
        )

    async def open(self, name: str) -> ICache:
        await self._ensure(name)
        return SQLiteCache(self, name)

    async def has(self, name: str) -> bool:
        async with self._guard("has store") as db:
            async with db.execute("SELECT 1 FROM caches WHERE name = ?", (name,)) as cursor:
                row = await cursor.fetchone()
        return row is not None

    async def delete(self, name: str) -> bool:
        async with self._guard("delete store") as db:
            await db.execute("DELETE FROM cache_entries WHERE cache_name = ?", (name,))
            cursor = await db.execute("DELETE FROM caches WHERE name = ?", (name,))
            await db.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            self.stats.stores_deleted += 1
        return deleted

    async def keys(self) -> List[str]:
        async with self._guard("list stores") as db:
            async with db.execute("SELECT name FROM caches ORDER BY id") as cursor:
                rows = await cursor.fetchall()
        return [row["name"] for row in rows]

    async def match(self, request: CacheRequest, cache_name: Optional[str] = None) -> Optional[ResponseSnapshot]:
        if cache_name is not None:
            sql = "SELECT * FROM cache_entries WHERE cache_name = ? AND cache_key = ?"
            params = (cache_name, request.cache_key)
        else:
            sql = """
                SELECT e.* FROM cache_entries e
                JOIN caches c ON c.name = e.cache_name
                WHERE e.cache_key = ?
                ORDER BY c.id
                LIMIT 1
            """
            params = (request.cache_key,)

        async with self._guard("match") as db:
            async with db.execute(sql, params) as cursor:
                row = await cursor.fetchone()

        self.stats.reads += 1
        if row is None:
            return None
        self.stats.hits += 1
        return self._row_to_response(row)

    async def get_current(self) -> Optional[str]:
        async with self._guard("get current") as db:
            async with db.execute(
                "SELECT value FROM storage_meta WHERE key = ?", (CURRENT_GENERATION_KEY,)
            ) as cursor:
                row = await cursor.fetchone()
        return row["value"] if row else None

    async def set_current(self, name: Optional[str]) -> None:
        async with self._guard("set current") as db:
            if name is None:
                await db.execute("DELETE FROM storage_meta WHERE key = ?", (CURRENT_GENERATION_KEY,))
            else:
                await db.execute(
                    "INSERT INTO storage_meta (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (CURRENT_GENERATION_KEY, name),
                )
            await db.commit()


async def open_sqlite_storage(db_path: Optional[str] = None) -> SQLiteCacheStorage:
    """Create and connect a SQLiteCacheStorage"""
    storage = SQLiteCacheStorage(db_path)
    return await storage.connect()


__all__ = ["SQLiteCache", "SQLiteCacheStorage", "open_sqlite_storage", "DEFAULT_DB_PATH"]
