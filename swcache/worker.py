"""
CacheWorker - 缓存层对外入口

把存储、网络、生命周期、策略引擎、控制通道和后台钩子组装在一起，
对宿主应用暴露与浏览器 service worker 事件一一对应的方法:

    install / activate  -> start()
    fetch               -> fetch()
    message             -> message()
    sync                -> sync()
    push                -> push()
    notificationclick   -> notification_click()
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional, Union

import httpx

from config import CacheSettings
from log import log

from .clients import Client, ClientRegistry
from .control import ControlChannel, ControlCommand, ReplyChannel
from .hooks import Notification, NotificationHooks, Notifier, SyncTask, TaskQueue
from .lifecycle import LifecycleManager
from .models import CacheRequest, ResponseSnapshot
from .network import NetworkClient
from .policy import PolicyEngine
from .store import ICacheStorage, MemoryCacheStorage, open_sqlite_storage


class CacheWorker:
    """
    请求拦截缓存

    Usage:
        worker = await CacheWorker.create(settings)
        await worker.start()
        response = await worker.fetch("/styles.css")
        await worker.close()
    """

    def __init__(
        self,
        settings: CacheSettings,
        storage: ICacheStorage,
        network: NetworkClient,
        clients: Optional[ClientRegistry] = None,
        queue: Optional[TaskQueue] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.storage = storage
        self.network = network
        self.clients = clients or ClientRegistry()
        self.lifecycle = LifecycleManager(settings, storage, network, self.clients, clock=clock)
        self.policy = PolicyEngine(settings, storage, network, self.lifecycle, clock=clock)
        self.control = ControlChannel(self.lifecycle)
        self.hooks = NotificationHooks(settings, self._replay, self.clients, queue=queue, notifier=notifier)

    @classmethod
    async def create(
        cls,
        settings: CacheSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ) -> "CacheWorker":
        """按配置创建存储（db_path 为空时使用内存存储）和网络客户端"""
        if settings.db_path:
            storage: ICacheStorage = await open_sqlite_storage(settings.db_path)
        else:
            storage = MemoryCacheStorage()
        network = NetworkClient(settings, transport=transport)
        return cls(settings, storage, network, **kwargs)

    async def start(self) -> bool:
        """恢复当前 generation，安装新 generation，允许时立即激活"""
        await self.lifecycle.restore()
        installed = await self.lifecycle.install()
        if installed and self.lifecycle.should_activate:
            await self.lifecycle.activate()
        return installed

    async def fetch(self, request: Union[CacheRequest, str]) -> ResponseSnapshot:
        if isinstance(request, str):
            request = CacheRequest.create(request, origin=self.settings.origin)
        return await self.policy.handle(request)

    async def message(self, data: Any, reply: Optional[ReplyChannel] = None) -> Optional[ControlCommand]:
        return await self.control.handle(data, reply)

    def sync(self, tag: str) -> asyncio.Task:
        return self.hooks.dispatch(self.hooks.on_sync(tag))

    def push(self, payload: Union[str, bytes, None]) -> asyncio.Task:
        return self.hooks.dispatch(self.hooks.on_push(payload))

    def notification_click(self, notification: Notification) -> asyncio.Task:
        return self.hooks.dispatch(self.hooks.on_notification_click(notification))

    def connect_client(self, url: str = "/") -> Client:
        """注册新打开的客户端视图，已激活时直接由当前 generation 控制"""
        return self.clients.register(url, controller=self.lifecycle.current_generation)

    async def queue_offline(self, request: CacheRequest) -> None:
        """离线时登记需要在后台同步时重放的请求"""
        await self.hooks.queue.enqueue(SyncTask(request=request, tag=self.settings.sync_tag))

    async def _replay(self, task: SyncTask) -> None:
        response = await self.network.fetch(task.request)
        log.info(f"[WORKER] Replayed {task.request.cache_key} -> {response.status}")

    async def status(self) -> Dict[str, Any]:
        return {
            **self.lifecycle.status(),
            "stores": await self.storage.keys(),
            "clients": [c.to_dict() for c in self.clients.all()],
            "policy": self.policy.stats.to_dict(),
            "store_stats": self.storage.stats.to_dict(),
            "queued_tasks": len(self.hooks.queue),
            "pending_hooks": self.hooks.pending,
        }

    async def close(self) -> None:
        await self.hooks.wait_idle()
        await self.network.aclose()
        await self.storage.close()


__all__ = ["CacheWorker"]
