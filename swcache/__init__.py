"""
swcache - request-interception cache for the community directory front end
社区目录前端的请求拦截缓存层

Architecture:
    Store      -> swcache.store (memory / SQLite generation stores)
    Policy     -> swcache.policy (network-only lane + cache-first-with-expiry lane)
    Lifecycle  -> swcache.lifecycle (install / activate / claim)
    Control    -> swcache.control (FORCE_ACTIVATE / CLEAR messages)
    Hooks      -> swcache.hooks (background sync, push notifications)

Usage:
    from config import load_settings
    from swcache import CacheWorker

    worker = await CacheWorker.create(load_settings())
    await worker.start()
    response = await worker.fetch("/styles.css")
"""

from .control import CLEAR_REPLY, ControlChannel, ControlCommand, ReplyChannel
from .errors import CacheLayerError, InstallError, NetworkError, StoreError
from .hooks import InMemoryTaskQueue, Notification, NotificationHooks, SyncTask, TaskQueue
from .lifecycle import LifecycleManager, WorkerState
from .models import CacheRequest, ResponseSnapshot, offline_response
from .network import NetworkClient
from .policy import PolicyEngine
from .worker import CacheWorker

__all__ = [
    "CacheWorker",
    "CacheRequest",
    "ResponseSnapshot",
    "offline_response",
    "PolicyEngine",
    "LifecycleManager",
    "WorkerState",
    "ControlChannel",
    "ControlCommand",
    "ReplyChannel",
    "CLEAR_REPLY",
    "NotificationHooks",
    "Notification",
    "SyncTask",
    "TaskQueue",
    "InMemoryTaskQueue",
    "NetworkClient",
    "CacheLayerError",
    "InstallError",
    "NetworkError",
    "StoreError",
]

__version__ = "1.0.0"
