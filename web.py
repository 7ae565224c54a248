"""
Main Web Integration - local caching proxy in front of the directory site
本地缓存代理：前端所有请求经由缓存层的策略引擎转发到源站
"""

# 加载 .env 文件中的环境变量（必须在其他导入之前）
from dotenv import load_dotenv
load_dotenv()

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import CacheSettings, load_settings
from log import log
from swcache import CacheRequest, CacheWorker, NetworkError, ReplyChannel, ResponseSnapshot

CONTROL_PREFIX = "/__cache"

# 转发给源站的请求头
FORWARDED_HEADERS = ("accept", "accept-language", "user-agent", "if-none-match", "if-modified-since")

# httpx 已解码/重新分帧的响应头不能原样回传
HOP_BY_HOP_HEADERS = {"content-length", "content-encoding", "transfer-encoding", "connection", "keep-alive"}


class SyncBody(BaseModel):
    tag: str


class PushBody(BaseModel):
    data: Optional[str] = None


def to_response(snapshot: ResponseSnapshot, head_only: bool = False) -> Response:
    headers = {k: v for k, v in snapshot.headers if k not in HOP_BY_HOP_HEADERS}
    return Response(
        content=b"" if head_only else snapshot.body,
        status_code=snapshot.status,
        headers=headers,
    )


def create_app(
    settings: Optional[CacheSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        settings: 缓存配置（为空时在启动时调用 load_settings()）
        transport: 可选的 httpx transport（测试时注入 MockTransport）
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        resolved = settings or load_settings()
        log.info(f"启动缓存代理: generation={resolved.cache_name} origin={resolved.origin}")

        worker = await CacheWorker.create(resolved, transport=transport)
        app.state.worker = worker

        if await worker.start():
            log.success("app shell 安装完成")
        else:
            log.warning("app shell 安装失败，继续使用上一代缓存")

        yield

        log.info("开始关闭缓存代理")
        await worker.close()
        log.info("缓存代理已停止")

    app = FastAPI(
        title="swcache",
        description="Request-interception cache for the community directory",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NetworkError)
    async def network_error_handler(request: Request, exc: NetworkError) -> JSONResponse:
        log.warning(f"[WEB] Upstream unreachable: {exc}")
        return JSONResponse(status_code=504, content={"error": "upstream_unreachable", "url": exc.url})

    def get_worker(request: Request) -> CacheWorker:
        return request.app.state.worker

    # ==================== 控制端点 ====================

    @app.get(f"{CONTROL_PREFIX}/status")
    async def cache_status(request: Request) -> Dict[str, Any]:
        return await get_worker(request).status()

    @app.post(f"{CONTROL_PREFIX}/message")
    async def cache_message(request: Request) -> Dict[str, Any]:
        """控制消息；格式错误的消息被忽略，不返回错误"""
        raw = await request.body()
        reply = ReplyChannel()
        command = await get_worker(request).message(raw, reply)
        return {
            "command": command.value if command else None,
            "reply": await reply.receive() if reply.replied else None,
        }

    @app.post(f"{CONTROL_PREFIX}/sync", status_code=202)
    async def cache_sync(body: SyncBody, request: Request) -> Dict[str, Any]:
        get_worker(request).sync(body.tag)
        return {"scheduled": True}

    @app.post(f"{CONTROL_PREFIX}/push", status_code=202)
    async def cache_push(body: PushBody, request: Request) -> Dict[str, Any]:
        get_worker(request).push(body.data)
        return {"scheduled": True}

    @app.post(f"{CONTROL_PREFIX}/clients", status_code=201)
    async def cache_connect_client(request: Request) -> Dict[str, Any]:
        return get_worker(request).connect_client("/").to_dict()

    @app.get(f"{CONTROL_PREFIX}/fetch")
    async def cache_fetch(url: str, request: Request) -> Response:
        """通过缓存层请求任意绝对 URL（如实时数据 API）"""
        worker = get_worker(request)
        snapshot = await worker.fetch(CacheRequest.create(url, headers=_forwarded(request)))
        return to_response(snapshot)

    # ==================== 代理 ====================

    @app.api_route("/{path:path}", methods=["GET", "HEAD"])
    async def proxy(path: str, request: Request) -> Response:
        worker = get_worker(request)
        target = "/" + path
        if request.url.query:
            target += "?" + request.url.query
        snapshot = await worker.fetch(
            CacheRequest.create(target, headers=_forwarded(request), origin=worker.settings.origin)
        )
        return to_response(snapshot, head_only=request.method == "HEAD")

    return app


def _forwarded(request: Request) -> Dict[str, str]:
    return {k: v for k, v in request.headers.items() if k.lower() in FORWARDED_HEADERS}


app = create_app()


async def main():
    """异步主启动函数"""
    from hypercorn.asyncio import serve
    from hypercorn.config import Config

    settings = load_settings()

    log.info("=" * 60)
    log.info("启动 swcache 缓存代理")
    log.info(f"   代理地址: http://127.0.0.1:{settings.port}")
    log.info(f"   源站: {settings.origin}")
    log.info(f"   控制端点: http://127.0.0.1:{settings.port}{CONTROL_PREFIX}")
    log.info("=" * 60)

    config = Config()
    config.bind = [f"{settings.host}:{settings.port}"]
    config.accesslog = "-"
    config.errorlog = "-"
    config.loglevel = "INFO"

    await serve(create_app(settings), config)


if __name__ == "__main__":
    asyncio.run(main())
