"""
Client Registry - 已打开的客户端视图

记录当前连接到缓存层的客户端（浏览器标签页 / 前端实例），
以及每个客户端当前由哪个 generation 控制。

职责:
1. 注册客户端
2. 激活时 claim：让所有已打开的客户端立即由新 generation 控制
3. 通知点击时打开新的客户端窗口
"""

import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from log import log


@dataclass
class Client:
    """单个客户端视图"""
    id: str
    url: str
    controller: Optional[str] = None   # 控制该客户端的 generation 名称
    opened_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "controller": self.controller,
            "opened_at": self.opened_at.isoformat(),
        }


class ClientRegistry:
    """
    客户端注册表

    Usage:
        registry = ClientRegistry()
        client = registry.register("/")
        registry.claim("saudi-music-db-v2")
        assert client.controller == "saudi-music-db-v2"
    """

    def __init__(self):
        self._clients: Dict[str, Client] = {}
        self._ids = itertools.count(1)

    def register(self, url: str, controller: Optional[str] = None) -> Client:
        client = Client(id=f"client-{next(self._ids)}", url=url, controller=controller)
        self._clients[client.id] = client
        log.debug(f"[CLIENTS] Registered {client.id} at {url}")
        return client

    def get(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)

    def all(self) -> List[Client]:
        return list(self._clients.values())

    def claim(self, generation: str) -> int:
        """让所有已打开的客户端由 generation 控制，返回被接管的数量"""
        claimed = 0
        for client in self._clients.values():
            if client.controller != generation:
                client.controller = generation
                claimed += 1
        log.info(f"[CLIENTS] Claimed {claimed} client(s) for {generation}")
        return claimed

    def open_window(self, url: str, controller: Optional[str] = None) -> Client:
        """打开新客户端窗口（通知点击时使用）"""
        client = self.register(url, controller=controller)
        log.info(f"[CLIENTS] Opened window {client.id} at {url}")
        return client


__all__ = ["Client", "ClientRegistry"]
