"""
Lifecycle Manager Tests - generation 安装 / 激活测试
"""

import pytest

from swcache import CacheRequest, CacheWorker, NetworkClient, ResponseSnapshot, WorkerState
from swcache.store import MemoryCacheStorage

from .conftest import ORIGIN, FlakyDeleteStorage, make_settings


async def seed(storage: MemoryCacheStorage, name: str, path: str = "/styles.css", body: bytes = b"old") -> None:
    cache = await storage.open(name)
    await cache.put(CacheRequest.create(path, origin=ORIGIN), ResponseSnapshot(status=200, body=body, captured_at=0.0))


class TestInstall:
    """测试 install 阶段"""

    @pytest.mark.asyncio
    async def test_install_populates_generation(self, worker, storage, clock):
        """安装成功后 manifest 中的全部资源都在存储中，时间戳为安装时间"""
        assert await worker.lifecycle.install()

        assert worker.lifecycle.state == WorkerState.INSTALLED
        assert await storage.keys() == ["saudi-music-db-v1"]
        for path in ("/", "/index.html", "/styles.css"):
            entry = await storage.match(CacheRequest.create(path, origin=ORIGIN), cache_name="saudi-music-db-v1")
            assert entry is not None
            assert entry.captured_at == clock.now

    @pytest.mark.asyncio
    async def test_install_failure_writes_nothing(self, worker, storage, origin):
        """任一资源失败时不写入任何条目"""
        origin.add("/styles.css", b"gone", status=404)

        assert not await worker.lifecycle.install()

        assert worker.lifecycle.state == WorkerState.REDUNDANT
        assert await storage.keys() == []
        error = worker.lifecycle.last_install_error
        assert error is not None
        assert [url for url, _ in error.failed] == [ORIGIN + "/styles.css"]

    @pytest.mark.asyncio
    async def test_install_failure_when_offline(self, worker, origin):
        """离线安装失败不会抛出异常"""
        origin.offline = True

        assert not await worker.start()
        assert worker.lifecycle.current_generation is None

    @pytest.mark.asyncio
    async def test_failed_install_keeps_previous_generation(self, storage, origin, clock):
        """新 generation 安装失败时，上一代保持为当前 generation 且可用"""
        v1 = CacheWorker(make_settings(), storage, NetworkClient(make_settings(), transport=origin.transport), clock=clock)
        assert await v1.start()
        await v1.close()

        origin.add("/styles.css", b"new", status=404)
        settings_v2 = make_settings(cache_name="saudi-music-db-v2")
        v2 = CacheWorker(settings_v2, storage, NetworkClient(settings_v2, transport=origin.transport), clock=clock)

        assert not await v2.start()

        assert await storage.get_current() == "saudi-music-db-v1"
        assert await storage.keys() == ["saudi-music-db-v1"]
        assert v2.lifecycle.serving_generation == "saudi-music-db-v1"

        origin.offline = True
        response = await v2.fetch("/styles.css")
        assert response.body == b"body { direction: rtl; }"
        await v2.close()


class TestActivate:
    """测试 activate 阶段"""

    @pytest.mark.asyncio
    async def test_activate_deletes_every_other_name(self, origin, clock):
        """只保留名称完全等于当前 generation 的存储"""
        storage = MemoryCacheStorage()
        for name in ("saudi-music-db-v1", "saudi-music-db-v2-data", "unrelated"):
            await seed(storage, name)
        settings = make_settings(cache_name="saudi-music-db-v2")
        worker = CacheWorker(settings, storage, NetworkClient(settings, transport=origin.transport), clock=clock)

        assert await worker.start()

        assert await storage.keys() == ["saudi-music-db-v2"]
        assert await storage.get_current() == "saudi-music-db-v2"
        assert worker.lifecycle.state == WorkerState.ACTIVATED
        await worker.close()

    @pytest.mark.asyncio
    async def test_delete_failure_is_not_fatal(self, origin, clock):
        """单个旧存储删除失败不影响其他删除和激活"""
        storage = FlakyDeleteStorage(broken=["stuck"])
        await seed(storage, "stuck")
        await seed(storage, "saudi-music-db-v0")
        settings = make_settings()
        worker = CacheWorker(settings, storage, NetworkClient(settings, transport=origin.transport), clock=clock)

        await worker.lifecycle.install()
        deleted = await worker.lifecycle.activate()

        assert deleted == ["saudi-music-db-v0"]
        assert sorted(await storage.keys()) == ["saudi-music-db-v1", "stuck"]
        assert worker.lifecycle.state == WorkerState.ACTIVATED
        await worker.close()

    @pytest.mark.asyncio
    async def test_activate_claims_open_clients(self, storage, origin, clock):
        """激活后已打开的客户端立即由新 generation 控制"""
        await seed(storage, "saudi-music-db-v1")
        await storage.set_current("saudi-music-db-v1")
        settings = make_settings(cache_name="saudi-music-db-v2")
        worker = CacheWorker(settings, storage, NetworkClient(settings, transport=origin.transport), clock=clock)
        await worker.lifecycle.restore()
        tab = worker.connect_client("/")
        assert tab.controller == "saudi-music-db-v1"

        assert await worker.start()

        assert tab.controller == "saudi-music-db-v2"
        await worker.close()

    @pytest.mark.asyncio
    async def test_restart_reuses_current_generation(self, storage, origin, clock):
        """重新安装同一 generation 不会删除自身"""
        settings = make_settings()
        first = CacheWorker(settings, storage, NetworkClient(settings, transport=origin.transport), clock=clock)
        assert await first.start()

        second = CacheWorker(settings, storage, NetworkClient(settings, transport=origin.transport), clock=clock)
        assert await second.start()

        assert await storage.keys() == ["saudi-music-db-v1"]
        assert second.lifecycle.current_generation == "saudi-music-db-v1"
        await first.close()
        await second.close()


class TestWaiting:
    """测试等待与强制激活"""

    @pytest.mark.asyncio
    async def test_installed_generation_skips_waiting(self, worker):
        assert await worker.lifecycle.install()

        assert worker.lifecycle.waiting
        assert worker.lifecycle.should_activate

    @pytest.mark.asyncio
    async def test_force_activate_requires_install(self, worker):
        """未安装时强制激活不做任何事"""
        assert not await worker.lifecycle.force_activate()
        assert worker.lifecycle.state == WorkerState.PARSED

    @pytest.mark.asyncio
    async def test_force_activate_after_install(self, worker, storage):
        await worker.lifecycle.install()

        assert await worker.lifecycle.force_activate()

        assert worker.lifecycle.state == WorkerState.ACTIVATED
        assert await storage.get_current() == "saudi-music-db-v1"

    @pytest.mark.asyncio
    async def test_should_activate_only_when_installed(self, worker, origin):
        """未安装或安装失败时不会激活"""
        assert not worker.lifecycle.should_activate

        origin.add("/index.html", b"gone", status=500)
        assert not await worker.lifecycle.install()

        assert not worker.lifecycle.should_activate
        assert worker.lifecycle.state == WorkerState.REDUNDANT
