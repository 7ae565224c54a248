"""
Policy Engine - 请求分流与缓存策略

每个被拦截的请求被归入两条通道之一:

1. network-only 通道（目标主机包含 settings.network_only_host，实时数据 API）
   - 直接走网络；成功时改写 Cache-Control 为短期 max-age 后返回，不读不写存储
   - 网络失败时回退到存储中该请求的最后一条记录；没有则抛出 NetworkError

2. cache-first-with-expiry 通道（其他所有请求）
   - 命中且未过期：直接返回，不访问网络
   - 未命中或已过期：访问网络
     - 200 + 同源 + 非部分响应：写入当前 generation 存储后返回
     - 其他响应：原样返回，不写入
     - 网络失败：有过期条目则返回过期条目，否则合成 503 离线响应

非 GET 请求（network-only 通道除外）直接透传到网络，不读写存储。
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

import httpx

from config import CacheSettings
from log import log

from .errors import NetworkError, StoreError
from .lifecycle import LifecycleManager
from .models import RESPONSE_BASIC, CacheRequest, ResponseSnapshot, offline_response
from .network import NetworkClient
from .store import ICacheStorage


@dataclass
class PolicyStats:
    """
    Policy statistics
    策略统计信息
    """
    network_only: int = 0
    passthrough: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    expired: int = 0
    writes: int = 0
    stale_served: int = 0
    offline_synthesized: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


class PolicyEngine:
    """
    请求拦截策略引擎

    Usage:
        engine = PolicyEngine(settings, storage, network, lifecycle)
        response = await engine.handle(CacheRequest.create("/styles.css", origin=settings.origin))
    """

    def __init__(
        self,
        settings: CacheSettings,
        storage: ICacheStorage,
        network: NetworkClient,
        lifecycle: LifecycleManager,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.storage = storage
        self.network = network
        self.lifecycle = lifecycle
        self._clock = clock
        self.stats = PolicyStats()
        # 没有时间戳的条目只当作新鲜使用一次
        self._served_untimestamped: Set[str] = set()

    def is_network_only(self, request: CacheRequest) -> bool:
        try:
            host = request.host
        except httpx.InvalidURL:
            # 无法解析的 URL 走 cache-first，由网络层失败转为离线响应
            return False
        return self.settings.network_only_host in host

    async def handle(self, request: CacheRequest) -> ResponseSnapshot:
        """处理一个被拦截的请求，返回与网络响应形状一致的响应快照"""
        if self.is_network_only(request):
            log.route(f"[POLICY] network-only {request.cache_key}")
            return await self._network_only(request)

        if request.method != "GET":
            log.route(f"[POLICY] passthrough {request.cache_key}")
            return await self._passthrough(request)

        return await self._cache_first(request)

    # ==================== network-only ====================

    async def _network_only(self, request: CacheRequest) -> ResponseSnapshot:
        self.stats.network_only += 1
        try:
            response = await self.network.fetch(request)
        except NetworkError:
            cached = await self._match(request, cache_name=None)
            if cached is not None:
                self.stats.stale_served += 1
                log.fallback(f"[POLICY] Network failed, serving stored copy of {request.cache_key}")
                return cached
            raise

        return response.with_header("cache-control", self.settings.network_only_cache_control)

    # ==================== passthrough ====================

    async def _passthrough(self, request: CacheRequest) -> ResponseSnapshot:
        self.stats.passthrough += 1
        try:
            return await self.network.fetch(request)
        except NetworkError:
            self.stats.offline_synthesized += 1
            log.fallback(f"[POLICY] Offline, synthesized 503 for {request.cache_key}")
            return offline_response()

    # ==================== cache-first ====================

    async def _cache_first(self, request: CacheRequest) -> ResponseSnapshot:
        cache_name = self.lifecycle.serving_generation
        cached = await self._match(request, cache_name=cache_name)

        if cached is not None:
            if self._is_fresh(request, cached):
                self.stats.cache_hits += 1
                log.route(f"[POLICY] cache hit {request.cache_key}")
                return cached
            self.stats.expired += 1
            log.route(f"[POLICY] cache expired {request.cache_key}")
        else:
            self.stats.cache_misses += 1
            log.route(f"[POLICY] cache miss {request.cache_key}")

        try:
            response = await self.network.fetch(request)
        except NetworkError:
            if cached is not None:
                self.stats.stale_served += 1
                log.fallback(f"[POLICY] Offline, serving stale {request.cache_key}")
                return cached
            self.stats.offline_synthesized += 1
            log.fallback(f"[POLICY] Offline, synthesized 503 for {request.cache_key}")
            return offline_response()

        if self.is_cacheable(response):
            await self._store(cache_name, request, response.stamped(self._clock()))
        return response

    def _is_fresh(self, request: CacheRequest, cached: ResponseSnapshot) -> bool:
        age = cached.age(self._clock())
        if age is None:
            if request.cache_key in self._served_untimestamped:
                return False
            self._served_untimestamped.add(request.cache_key)
            return True
        return age < self.settings.expiry_seconds

    @staticmethod
    def is_cacheable(response: ResponseSnapshot) -> bool:
        """成功、同源、完整的响应才写入存储"""
        return (
            response.status == 200
            and response.response_type == RESPONSE_BASIC
            and not response.is_partial
        )

    async def _match(self, request: CacheRequest, cache_name: Optional[str]) -> Optional[ResponseSnapshot]:
        try:
            return await self.storage.match(request, cache_name=cache_name)
        except StoreError as e:
            log.warning(f"[POLICY] Store lookup failed for {request.cache_key}: {e}")
            return None

    async def _store(self, cache_name: str, request: CacheRequest, response: ResponseSnapshot) -> None:
        try:
            cache = await self.storage.open(cache_name)
            await cache.put(request, response)
        except StoreError as e:
            log.warning(f"[POLICY] Store write failed for {request.cache_key}: {e}")
            return
        self.stats.writes += 1
        self._served_untimestamped.discard(request.cache_key)


__all__ = ["PolicyEngine", "PolicyStats"]
