"""
Store Interface - Abstract interface for generation stores
缓存存储抽象接口 - 定义按 generation 命名的存储容器

This module provides:
    - CacheEntry: Data class for a stored (request key -> response) pair
    - StoreStats: Counters shared by all backends
    - ICache: One named generation store
    - ICacheStorage: The namespace holding every generation store plus the
      persisted "current generation" pointer
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..models import CacheRequest, ResponseSnapshot


@dataclass(frozen=True)
class CacheEntry:
    """
    Cache entry data class
    缓存条目数据类

    Attributes:
        cache_name: Generation store holding this entry
        key: Normalized request identity ("GET https://...")
        response: Stored response snapshot (carries captured_at)
    """
    cache_name: str
    key: str
    response: ResponseSnapshot

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for status output"""
        return {
            "cache_name": self.cache_name,
            "key": self.key,
            "response": self.response.to_dict(),
        }


@dataclass
class StoreStats:
    """
    Store statistics
    存储统计信息
    """
    reads: int = 0
    hits: int = 0
    writes: int = 0
    stores_deleted: int = 0

    @property
    def hit_rate(self) -> float:
        if self.reads == 0:
            return 0.0
        return self.hits / self.reads

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reads": self.reads,
            "hits": self.hits,
            "writes": self.writes,
            "stores_deleted": self.stores_deleted,
            "hit_rate": round(self.hit_rate, 4),
        }


class ICache(ABC):
    """
    One generation store
    单个 generation 的存储容器
    """

    name: str

    @abstractmethod
    async def match(self, request: CacheRequest) -> Optional[ResponseSnapshot]:
        """Return the stored response for ``request`` or None"""
        pass

    @abstractmethod
    async def put(self, request: CacheRequest, response: ResponseSnapshot) -> None:
        """Store ``response`` under the request key, overwriting any prior entry"""
        pass

    @abstractmethod
    async def keys(self) -> List[str]:
        pass


class ICacheStorage(ABC):
    """
    Namespace of generation stores
    所有 generation 存储的命名空间

    Implementations must survive restarts of the hosting process where the
    backend allows it (the SQLite backend does, the memory backend does not).
    """

    def __init__(self) -> None:
        self.stats = StoreStats()

    @abstractmethod
    async def open(self, name: str) -> ICache:
        """Open the store ``name``, creating it if missing"""
        pass

    @abstractmethod
    async def has(self, name: str) -> bool:
        pass

    @abstractmethod
    async def delete(self, name: str) -> bool:
        """Delete the store ``name`` with all entries; False if it did not exist"""
        pass

    @abstractmethod
    async def keys(self) -> List[str]:
        """Names of all stores, in creation order"""
        pass

    @abstractmethod
    async def match(self, request: CacheRequest, cache_name: Optional[str] = None) -> Optional[ResponseSnapshot]:
        """
        Look up ``request`` in ``cache_name`` only, or in every store (creation
        order) when ``cache_name`` is None. Never creates a store.
        """
        pass

    @abstractmethod
    async def get_current(self) -> Optional[str]:
        """Persisted name of the current generation"""
        pass

    @abstractmethod
    async def set_current(self, name: Optional[str]) -> None:
        pass

    async def close(self) -> None:
        """Release backend resources"""
        pass


__all__ = [
    "CacheEntry",
    "StoreStats",
    "ICache",
    "ICacheStorage",
]
