"""
网络层 - 缓存层唯一的出站 HTTP 通道

为策略引擎和生命周期管理器提供统一的 fetch 接口：
- 复用一个 httpx.AsyncClient（连接池）
- 代理支持：settings.proxy
- 超时由网络层自身决定（settings.request_timeout），缓存层不额外施加
- 传输层错误统一转换为 NetworkError
- 根据应用源（origin）判断响应类型 basic / cors
"""

from typing import Optional

import httpx

from config import CacheSettings
from log import log

from .errors import NetworkError
from .models import RESPONSE_BASIC, RESPONSE_CORS, CacheRequest, ResponseSnapshot


class NetworkClient:
    """
    异步 HTTP 客户端封装

    Usage:
        client = NetworkClient(settings)
        response = await client.fetch(CacheRequest.create("/styles.css", origin=settings.origin))
        await client.aclose()

    测试时可以传入 httpx.MockTransport 作为 transport。
    """

    def __init__(
        self,
        settings: CacheSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self._origin = CacheRequest.create(settings.origin).origin
        self._owns_client = client is None
        if client is None:
            client_kwargs = {"timeout": settings.request_timeout, "follow_redirects": True}
            if settings.proxy and transport is None:
                client_kwargs["proxy"] = settings.proxy
            if transport is not None:
                client_kwargs["transport"] = transport
            client = httpx.AsyncClient(**client_kwargs)
        self._client = client
        self.requests_sent = 0

    def classify(self, url: str) -> str:
        """同源响应为 basic，其他为 cors"""
        return RESPONSE_BASIC if CacheRequest(url=url).origin == self._origin else RESPONSE_CORS

    async def fetch(self, request: CacheRequest) -> ResponseSnapshot:
        """
        发送请求并返回完整响应快照

        HTTP 错误状态（4xx/5xx）不算失败，原样返回；只有传输层错误抛出 NetworkError。

        Raises:
            NetworkError: 连接失败、超时等
        """
        self.requests_sent += 1
        # 片段只在客户端有意义，不发送到服务器
        url = request.url.split("#", 1)[0]
        try:
            response = await self._client.request(
                request.method,
                url,
                headers=list(request.headers),
                content=request.body or None,
            )
        except (httpx.RequestError, httpx.InvalidURL) as e:
            log.warning(f"[NETWORK] {request.method} {request.url} failed: {e!r}")
            raise NetworkError(request.url, f"Network request failed: {e}", cause=e) from e

        final_url = str(response.url)
        log.debug(f"[NETWORK] {request.method} {request.url} -> {response.status_code}")
        return ResponseSnapshot.from_httpx(response, url=final_url, response_type=self.classify(final_url))

    async def aclose(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()


__all__ = ["NetworkClient"]
