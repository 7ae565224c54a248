"""
Memory Store - volatile in-process generation stores
内存存储 - 进程内的 generation 存储，主要用于测试和临时实例

Architecture:
    - dict[name -> OrderedDict[key -> CacheEntry]]
    - insertion order of the outer dict is the store creation order
    - no locking: every caller runs on the same event loop
"""

from collections import OrderedDict
from typing import Dict, List, Optional

from log import log

from ..models import CacheRequest, ResponseSnapshot
from .store_interface import CacheEntry, ICache, ICacheStorage


class MemoryCache(ICache):
    """Single in-memory generation store"""

    def __init__(self, storage: "MemoryCacheStorage", name: str):
        self._storage = storage
        self.name = name

    @property
    def _entries(self) -> "OrderedDict[str, CacheEntry]":
        # 存储被删除后重新 open 会得到新的容器，旧句柄的写入落到新容器里
        return self._storage._ensure(self.name)

    async def match(self, request: CacheRequest) -> Optional[ResponseSnapshot]:
        stats = self._storage.stats
        stats.reads += 1
        entry = self._storage._stores.get(self.name, {}).get(request.cache_key)
        if entry is None:
            return None
        stats.hits += 1
        return entry.response

    async def put(self, request: CacheRequest, response: ResponseSnapshot) -> None:
        self._entries[request.cache_key] = CacheEntry(self.name, request.cache_key, response)
        self._storage.stats.writes += 1

    async def keys(self) -> List[str]:
        return list(self._storage._stores.get(self.name, {}).keys())


class MemoryCacheStorage(ICacheStorage):
    """
    In-memory implementation of ICacheStorage

    Usage:
        storage = MemoryCacheStorage()
        cache = await storage.open("saudi-music-db-v1")
        await cache.put(request, response)
        cached = await storage.match(request)
    """

    def __init__(self):
        super().__init__()
        self._stores: Dict[str, "OrderedDict[str, CacheEntry]"] = {}
        self._current: Optional[str] = None

    def _ensure(self, name: str) -> "OrderedDict[str, CacheEntry]":
        if name not in self._stores:
            self._stores[name] = OrderedDict()
            log.debug(f"[STORE] Created store {name}")
        return self._stores[name]

    async def open(self, name: str) -> ICache:
        self._ensure(name)
        return MemoryCache(self, name)

    async def has(self, name: str) -> bool:
        return name in self._stores

    async def delete(self, name: str) -> bool:
        if self._stores.pop(name, None) is None:
            return False
        self.stats.stores_deleted += 1
        return True

    async def keys(self) -> List[str]:
        return list(self._stores.keys())

    async def match(self, request: CacheRequest, cache_name: Optional[str] = None) -> Optional[ResponseSnapshot]:
        names = [cache_name] if cache_name is not None else list(self._stores.keys())
        self.stats.reads += 1
        for name in names:
            entry = self._stores.get(name, {}).get(request.cache_key)
            if entry is not None:
                self.stats.hits += 1
                return entry.response
        return None

    async def get_current(self) -> Optional[str]:
        return self._current

    async def set_current(self, name: Optional[str]) -> None:
        self._current = name


__all__ = ["MemoryCache", "MemoryCacheStorage"]
