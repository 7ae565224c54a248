"""
Lifecycle Manager - generation 安装 / 激活 / 接管

职责:
1. install: 把 app shell（manifest）完整写入以 generation 命名的存储
2. activate: 删除所有名称不完全等于当前 generation 的旧存储，然后接管所有客户端
3. skip waiting / force activate: 不等待旧客户端关闭，立即进入激活

约束:
- 安装是原子的：先抓取全部资源，全部成功后才写入；任一失败则不写入任何条目，
  之前的当前 generation 保持不变
- 只有 activate 会删除旧 generation；单个旧存储删除失败只记录日志，不影响其他删除
"""

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config import CacheSettings
from log import log

from .clients import ClientRegistry
from .errors import InstallError, NetworkError, StoreError
from .models import CacheRequest, ResponseSnapshot
from .network import NetworkClient
from .store import ICacheStorage


class WorkerState(Enum):
    """Lifecycle state enumeration"""
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


class LifecycleManager:
    """
    generation 生命周期管理器

    Usage:
        lifecycle = LifecycleManager(settings, storage, network, clients)
        await lifecycle.restore()
        if await lifecycle.install():
            await lifecycle.activate()
    """

    def __init__(
        self,
        settings: CacheSettings,
        storage: ICacheStorage,
        network: NetworkClient,
        clients: Optional[ClientRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.generation = settings.cache_name
        self.storage = storage
        self.network = network
        self.clients = clients or ClientRegistry()
        self._clock = clock

        self.state = WorkerState.PARSED
        self.current_generation: Optional[str] = None
        self._skip_waiting = False
        self.last_install_error: Optional[InstallError] = None

    async def restore(self) -> Optional[str]:
        """读取持久化的当前 generation（进程重启后继续使用上一代）"""
        try:
            self.current_generation = await self.storage.get_current()
        except StoreError as e:
            log.error(f"[LIFECYCLE] Cannot read current generation: {e}")
            self.current_generation = None
        if self.current_generation:
            log.info(f"[LIFECYCLE] Restored current generation {self.current_generation}")
        return self.current_generation

    # ==================== Install ====================

    async def install(self, manifest: Optional[Sequence[str]] = None) -> bool:
        """
        安装 generation：抓取 manifest 中的全部资源并写入存储

        失败只记录日志并返回 False，不会抛给宿主。
        """
        manifest = tuple(self.settings.manifest if manifest is None else manifest)
        self.state = WorkerState.INSTALLING
        log.info(f"[LIFECYCLE] Caching app shell for {self.generation} ({len(manifest)} resources)")

        try:
            await self._add_all(manifest)
        except InstallError as e:
            self.last_install_error = e
            self.state = WorkerState.REDUNDANT
            log.error(f"[LIFECYCLE] Cache failed: {e}", generation=self.generation)
            return False

        self.last_install_error = None
        self.state = WorkerState.INSTALLED
        log.success(f"[LIFECYCLE] Cache complete for {self.generation}")
        self.skip_waiting()
        return True

    async def _fetch_resource(self, request: CacheRequest) -> Tuple[CacheRequest, Optional[ResponseSnapshot], str]:
        try:
            response = await self.network.fetch(request)
        except NetworkError as e:
            return request, None, str(e)
        if not response.ok:
            return request, None, f"HTTP {response.status}"
        return request, response, ""

    async def _add_all(self, manifest: Sequence[str]) -> None:
        """
        原子写入：全部抓取成功后才开始写入

        Raises:
            InstallError: 任一资源抓取失败，或写入存储失败
        """
        requests = [CacheRequest.create(url, origin=self.settings.origin) for url in manifest]
        results = await asyncio.gather(*(self._fetch_resource(r) for r in requests))

        failed = [(request.url, reason) for request, response, reason in results if response is None]
        if failed:
            raise InstallError(self.generation, failed)

        now = self._clock()
        try:
            cache = await self.storage.open(self.generation)
            for request, response, _ in results:
                await cache.put(request, response.stamped(now))
        except StoreError as e:
            raise InstallError(self.generation, [("<store>", str(e))]) from e

    # ==================== Waiting / Activate ====================

    def skip_waiting(self) -> None:
        """不等待旧客户端关闭，允许立即激活"""
        self._skip_waiting = True

    @property
    def waiting(self) -> bool:
        """已安装但尚未激活"""
        return self.state == WorkerState.INSTALLED

    @property
    def should_activate(self) -> bool:
        """安装成功后总是 skip waiting，因此已安装即可激活"""
        return self.state == WorkerState.INSTALLED and self._skip_waiting

    async def force_activate(self) -> bool:
        """立即激活已安装的 generation（FORCE_ACTIVATE 控制消息）"""
        self.skip_waiting()
        if self.state != WorkerState.INSTALLED:
            log.debug(f"[LIFECYCLE] Force activate ignored in state {self.state.value}")
            return False
        await self.activate()
        return True

    async def activate(self) -> List[str]:
        """
        激活当前 generation：清理旧存储并接管客户端

        Returns:
            已删除的旧存储名称列表
        """
        self.state = WorkerState.ACTIVATING

        try:
            names = await self.storage.keys()
        except StoreError as e:
            log.error(f"[LIFECYCLE] Cannot enumerate stores: {e}")
            names = []

        stale = [name for name in names if name != self.generation]
        results = await asyncio.gather(
            *(self._delete_stale(name) for name in stale),
        )
        deleted = [name for name, ok in zip(stale, results) if ok]

        try:
            await self.storage.set_current(self.generation)
        except StoreError as e:
            log.error(f"[LIFECYCLE] Cannot persist current generation: {e}")
        self.current_generation = self.generation

        self.state = WorkerState.ACTIVATED
        log.success(f"[LIFECYCLE] Activated {self.generation}", deleted=len(deleted))

        self.clients.claim(self.generation)
        return deleted

    async def _delete_stale(self, name: str) -> bool:
        log.info(f"[LIFECYCLE] Deleting old cache {name}")
        try:
            return await self.storage.delete(name)
        except StoreError as e:
            log.warning(f"[LIFECYCLE] Failed to delete old cache {name}: {e}")
            return False

    # ==================== Clear ====================

    @property
    def serving_generation(self) -> str:
        """正在服务请求的 generation（尚未激活时为即将安装的 generation）"""
        return self.current_generation or self.generation

    async def clear(self) -> bool:
        """删除当前 generation 的整个存储"""
        name = self.serving_generation
        deleted = await self.storage.delete(name)
        log.info(f"[LIFECYCLE] Cleared store {name}", existed=deleted)
        return deleted

    def status(self) -> Dict[str, Any]:
        return {
            "generation": self.generation,
            "current_generation": self.current_generation,
            "state": self.state.value,
            "skip_waiting": self._skip_waiting,
            "last_install_error": str(self.last_install_error) if self.last_install_error else None,
        }


__all__ = ["LifecycleManager", "WorkerState"]
