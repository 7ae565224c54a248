"""
缓存层异常定义

所有异常都继承 CacheLayerError，宿主只需捕获这一个基类。
"""

from typing import Optional, Sequence, Tuple


class CacheLayerError(Exception):
    """缓存层异常基类"""
    pass


class NetworkError(CacheLayerError):
    """网络请求失败（连接失败、DNS、超时等传输层错误）"""

    def __init__(self, url: str, message: str, *, cause: Optional[BaseException] = None) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"{message} ({url})")


class InstallError(CacheLayerError):
    """app shell 安装失败，failed 中记录每个失败资源及原因"""

    def __init__(self, generation: str, failed: Sequence[Tuple[str, str]]) -> None:
        self.generation = generation
        self.failed = list(failed)
        details = ", ".join(f"{url}: {reason}" for url, reason in self.failed)
        super().__init__(f"Install of {generation} failed: {details}")


class StoreError(CacheLayerError):
    """存储后端读写失败"""
    pass


class ControlMessageError(CacheLayerError):
    """控制消息格式错误（只在控制通道内部使用，不会抛给调用方）"""
    pass


__all__ = [
    "CacheLayerError",
    "NetworkError",
    "InstallError",
    "StoreError",
    "ControlMessageError",
]
