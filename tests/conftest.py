"""
测试公共夹具

FakeOrigin 通过 httpx.MockTransport 模拟源站和外部 API，
可以随时切换为离线状态或让单个资源失败。
"""

from typing import Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from config import CacheSettings
from swcache import CacheWorker, NetworkClient, StoreError
from swcache.store import MemoryCacheStorage

ORIGIN = "https://directory.example"
SHEETS_URL = "https://sheets.googleapis.com/v4/spreadsheets/abc123/values/Artists!A1:Z"
START_TIME = 1_700_000_000.0
HOUR = 3600.0


class FakeOrigin:
    """可编程的假网络"""

    def __init__(self):
        self.routes: Dict[str, Tuple[int, bytes, Dict[str, str]]] = {}
        self.calls: List[str] = []
        self.offline = False
        self.unreachable: set = set()

    def add(self, url: str, body: bytes = b"", status: int = 200, headers: Optional[Dict[str, str]] = None):
        if url.startswith("/"):
            url = ORIGIN + url
        self.routes[str(httpx.URL(url))] = (status, body, headers or {})

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        if self.offline or url in self.unreachable:
            raise httpx.ConnectError("network unreachable", request=request)
        if url not in self.routes:
            return httpx.Response(404, content=b"not found")
        status, body, headers = self.routes[url]
        return httpx.Response(status, content=body, headers=headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls_to(self, path: str) -> int:
        target = str(httpx.URL(ORIGIN + path)) if path.startswith("/") else str(httpx.URL(path))
        return sum(1 for url in self.calls if url == target)


class FlakyDeleteStorage(MemoryCacheStorage):
    """删除指定存储时抛出 StoreError"""

    def __init__(self, broken: List[str]):
        super().__init__()
        self.broken = broken

    async def delete(self, name: str) -> bool:
        if name in self.broken:
            raise StoreError(f"disk error deleting {name}")
        return await super().delete(name)


class FakeClock:
    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> CacheSettings:
    values = dict(
        cache_name="saudi-music-db-v1",
        origin=ORIGIN,
        db_path=None,
        manifest=("/", "/index.html", "/styles.css"),
        request_timeout=5.0,
    )
    values.update(overrides)
    return CacheSettings(**values)


@pytest.fixture
def origin() -> FakeOrigin:
    fake = FakeOrigin()
    fake.add("/", b"<html>home</html>", headers={"content-type": "text/html"})
    fake.add("/index.html", b"<html>home</html>", headers={"content-type": "text/html"})
    fake.add("/styles.css", b"body { direction: rtl; }", headers={"content-type": "text/css"})
    fake.add("/app.js", b"console.log('app');", headers={"content-type": "application/javascript"})
    fake.add(SHEETS_URL, b'{"values": [["name", "city"]]}', headers={"cache-control": "no-store"})
    return fake


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> CacheSettings:
    return make_settings()


@pytest.fixture
def storage() -> MemoryCacheStorage:
    return MemoryCacheStorage()


@pytest_asyncio.fixture
async def worker(settings, storage, origin, clock):
    network = NetworkClient(settings, transport=origin.transport)
    cache_worker = CacheWorker(settings, storage, network, clock=clock)
    yield cache_worker
    await cache_worker.close()
