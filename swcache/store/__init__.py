"""
Store Module - named, versioned generation stores
generation 存储模块 - 内存实现 + SQLite 持久化实现

Usage:
    from swcache.store import MemoryCacheStorage, open_sqlite_storage

    storage = await open_sqlite_storage("data/offline_cache.db")
    cache = await storage.open("saudi-music-db-v1")
    await cache.put(request, response)
    cached = await storage.match(request, cache_name="saudi-music-db-v1")
"""

from .store_interface import CacheEntry, ICache, ICacheStorage, StoreStats
from .memory_store import MemoryCache, MemoryCacheStorage
from .sqlite_store import SQLiteCache, SQLiteCacheStorage, open_sqlite_storage

__all__ = [
    "CacheEntry",
    "ICache",
    "ICacheStorage",
    "StoreStats",
    "MemoryCache",
    "MemoryCacheStorage",
    "SQLiteCache",
    "SQLiteCacheStorage",
    "open_sqlite_storage",
]
