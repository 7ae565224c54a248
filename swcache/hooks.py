"""
Notification / Sync Hooks - 后台同步与推送通知

特性:
- 所有钩子都是 fire-and-forget：通过 dispatch() 调度为后台任务，不阻塞请求路径
- 后台同步：识别 settings.sync_tag，排空离线任务队列（队列为空时立即完成）
- 推送：有 payload 时构造本地通知；没有 payload 时静默忽略
- 通知点击：关闭通知并打开一个新的客户端窗口

离线任务队列通过 TaskQueue 接口抽象，默认实现为空的内存队列。
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Coroutine, Deque, Dict, List, Optional, Set, Union

from config import CacheSettings
from log import log

from .clients import Client, ClientRegistry
from .errors import NetworkError
from .models import CacheRequest


@dataclass
class SyncTask:
    """
    离线任务：网络恢复后需要重放的请求

    Attributes:
        request: 待重放的请求
        tag: 所属同步标签
        attempts: 已尝试次数
        created_at: 入队时间
    """
    request: CacheRequest
    tag: str = "background-sync"
    attempts: int = 0
    created_at: datetime = field(default_factory=datetime.now)


class TaskQueue(ABC):
    """离线任务队列接口"""

    @abstractmethod
    async def enqueue(self, task: SyncTask) -> None:
        pass

    @abstractmethod
    async def drain(self, handler: Callable[[SyncTask], Awaitable[None]]) -> int:
        """
        按 FIFO 顺序把任务交给 handler，返回成功处理的数量

        handler 抛出 NetworkError 时，该任务放回队首并停止排空（等待下一次同步）。
        """
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class InMemoryTaskQueue(TaskQueue):
    """内存任务队列（默认为空）"""

    def __init__(self):
        self._tasks: Deque[SyncTask] = deque()

    async def enqueue(self, task: SyncTask) -> None:
        self._tasks.append(task)

    async def drain(self, handler: Callable[[SyncTask], Awaitable[None]]) -> int:
        done = 0
        while self._tasks:
            task = self._tasks.popleft()
            task.attempts += 1
            try:
                await handler(task)
            except NetworkError:
                self._tasks.appendleft(task)
                raise
            done += 1
        return done

    def __len__(self) -> int:
        return len(self._tasks)


@dataclass
class Notification:
    """本地显示的通知"""
    title: str
    body: str
    icon: str = ""
    badge: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    closed: bool = False

    def close(self) -> None:
        self.closed = True


class Notifier(ABC):
    """通知展示接口"""

    @abstractmethod
    async def show(self, notification: Notification) -> None:
        pass


class LoggingNotifier(Notifier):
    """把通知写入日志并保留在内存中（无图形界面时使用）"""

    def __init__(self):
        self.shown: List[Notification] = []

    async def show(self, notification: Notification) -> None:
        self.shown.append(notification)
        log.info(f"[HOOKS] Notification: {notification.title} - {notification.body}")


class NotificationHooks:
    """
    后台钩子集合

    Usage:
        hooks = NotificationHooks(settings, network, clients)
        hooks.dispatch(hooks.on_sync("background-sync"))
        hooks.dispatch(hooks.on_push("New opportunity posted"))
        await hooks.wait_idle()
    """

    def __init__(
        self,
        settings: CacheSettings,
        replay: Callable[[SyncTask], Awaitable[None]],
        clients: ClientRegistry,
        queue: Optional[TaskQueue] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.settings = settings
        self._replay = replay
        self.clients = clients
        self.queue = queue or InMemoryTaskQueue()
        self.notifier = notifier or LoggingNotifier()
        self._tasks: Set[asyncio.Task] = set()

    # ==================== 调度 ====================

    def dispatch(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """把钩子调度为后台任务，调用方无需等待"""
        task = asyncio.create_task(self._run_safely(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_safely(self, coro: Coroutine[Any, Any, Any]) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"[HOOKS] Background hook failed: {e!r}")
            return None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """等待所有后台任务完成（关闭时使用）"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ==================== 钩子 ====================

    async def on_sync(self, tag: str) -> int:
        """后台同步触发，返回重放的任务数"""
        log.info(f"[HOOKS] Background sync triggered: {tag}")
        if tag != self.settings.sync_tag:
            log.debug(f"[HOOKS] Ignoring sync tag {tag}")
            return 0
        if not len(self.queue):
            return 0
        try:
            replayed = await self.queue.drain(self._replay)
        except NetworkError as e:
            log.warning(f"[HOOKS] Sync interrupted, {len(self.queue)} task(s) remain queued: {e}")
            return 0
        log.success(f"[HOOKS] Replayed {replayed} queued task(s)")
        return replayed

    async def on_push(self, payload: Union[str, bytes, None]) -> Optional[Notification]:
        """推送到达；没有 payload 时静默忽略"""
        if not payload:
            return None
        body = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
        notification = Notification(
            title=self.settings.notification_title,
            body=body,
            icon=self.settings.notification_icon,
            badge=self.settings.notification_icon,
        )
        await self.notifier.show(notification)
        return notification

    async def on_notification_click(self, notification: Notification) -> Client:
        notification.close()
        return self.clients.open_window("/")


__all__ = [
    "SyncTask",
    "TaskQueue",
    "InMemoryTaskQueue",
    "Notification",
    "Notifier",
    "LoggingNotifier",
    "NotificationHooks",
]
