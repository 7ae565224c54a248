"""
Control Channel Tests - 控制消息测试
"""

import json

import pytest

from swcache import CLEAR_REPLY, CacheRequest, CacheWorker, ControlCommand, NetworkClient, ReplyChannel, WorkerState
from swcache.control import FAILED_REPLY_PREFIX, PendingControlMessage, parse_control_message
from swcache.errors import ControlMessageError

from .conftest import ORIGIN, FlakyDeleteStorage, make_settings


class TestParseControlMessage:
    """测试消息解析"""

    @pytest.mark.parametrize("data, expected", [
        ({"type": "CLEAR"}, ControlCommand.CLEAR),
        ({"type": "FORCE_ACTIVATE"}, ControlCommand.FORCE_ACTIVATE),
        ({"type": "clear", "source": "settings-page"}, ControlCommand.CLEAR),
        ({"type": "SKIP_WAITING"}, ControlCommand.FORCE_ACTIVATE),
        ({"type": "CLEAR_CACHE"}, ControlCommand.CLEAR),
        ('{"type": "CLEAR"}', ControlCommand.CLEAR),
        (b'{"type": "FORCE_ACTIVATE"}', ControlCommand.FORCE_ACTIVATE),
    ])
    def test_recognized(self, data, expected):
        assert parse_control_message(data) is expected

    @pytest.mark.parametrize("data", [
        None,
        42,
        "CLEAR",
        b"not json",
        {},
        {"kind": "CLEAR"},
        {"type": "RELOAD"},
        {"type": 7},
        ["CLEAR"],
    ])
    def test_malformed_ignored(self, data):
        """格式错误的消息返回 None 而不是抛出异常"""
        assert parse_control_message(data) is None


class TestControlChannel:
    """测试控制消息处理"""

    @pytest.mark.asyncio
    async def test_clear_replies_and_forces_network(self, worker, origin):
        """CLEAR 后回复 "Cache cleared"，下一次请求必须访问网络"""
        assert await worker.start()
        await worker.fetch("/styles.css")
        before = origin.calls_to("/styles.css")

        reply = ReplyChannel()
        command = await worker.message({"type": "CLEAR"}, reply)

        assert command is ControlCommand.CLEAR
        assert await reply.receive(timeout=1) == CLEAR_REPLY
        assert await worker.storage.keys() == []

        await worker.fetch("/styles.css")
        assert origin.calls_to("/styles.css") == before + 1

    @pytest.mark.asyncio
    async def test_clear_recreates_store_on_next_write(self, worker, storage):
        assert await worker.start()
        await worker.message(json.dumps({"type": "CLEAR"}))

        await worker.fetch("/styles.css")

        assert await storage.keys() == ["saudi-music-db-v1"]
        assert await storage.match(CacheRequest.create("/styles.css", origin=ORIGIN)) is not None

    @pytest.mark.asyncio
    async def test_clear_without_reply_channel(self, worker):
        """没有回复通道时 CLEAR 仍然执行"""
        assert await worker.start()

        assert await worker.message({"type": "CLEAR"}) is ControlCommand.CLEAR
        assert await worker.storage.keys() == []

    @pytest.mark.asyncio
    async def test_malformed_message_has_no_effect(self, worker):
        assert await worker.start()
        reply = ReplyChannel()

        assert await worker.message({"kind": "CLEAR"}, reply) is None

        assert not reply.replied
        assert await worker.storage.keys() == ["saudi-music-db-v1"]
        assert worker.control.ignored == 1

    @pytest.mark.asyncio
    async def test_force_activate(self, worker, storage):
        """FORCE_ACTIVATE 立即激活已安装的 generation"""
        assert await worker.lifecycle.install()
        assert worker.lifecycle.state == WorkerState.INSTALLED

        assert await worker.message({"type": "FORCE_ACTIVATE"}) is ControlCommand.FORCE_ACTIVATE

        assert worker.lifecycle.state == WorkerState.ACTIVATED
        assert await storage.get_current() == "saudi-music-db-v1"

    @pytest.mark.asyncio
    async def test_legacy_skip_waiting_alias(self, worker):
        assert await worker.lifecycle.install()

        await worker.message({"type": "SKIP_WAITING"})

        assert worker.lifecycle.state == WorkerState.ACTIVATED

    @pytest.mark.asyncio
    async def test_force_activate_when_already_active(self, worker):
        """已激活时重复 FORCE_ACTIVATE 无副作用"""
        assert await worker.start()

        await worker.message({"type": "FORCE_ACTIVATE"})

        assert worker.lifecycle.state == WorkerState.ACTIVATED
        assert worker.control.processed == 1


class TestPendingControlMessage:
    """测试待处理消息只能消费一次"""

    def test_consume_once(self):
        message = PendingControlMessage(ControlCommand.CLEAR)

        assert message.consume() is ControlCommand.CLEAR
        with pytest.raises(ControlMessageError):
            message.consume()

    @pytest.mark.asyncio
    async def test_reply_channel_delivers_first_message_only(self):
        reply = ReplyChannel()
        reply.post_message("first")
        reply.post_message("second")

        assert reply.replied
        assert await reply.receive() == "first"


class TestControlFailures:
    """测试控制命令失败时的回复"""

    @pytest.mark.asyncio
    async def test_clear_failure_still_replies(self, origin, clock):
        """存储删除失败时 CLEAR 仍然回答调用方，不会让等待方挂起"""
        settings = make_settings()
        storage = FlakyDeleteStorage(broken=["saudi-music-db-v1"])
        worker = CacheWorker(settings, storage, NetworkClient(settings, transport=origin.transport), clock=clock)
        assert await worker.start()
        reply = ReplyChannel()

        command = await worker.message({"type": "CLEAR"}, reply)

        assert command is ControlCommand.CLEAR
        answer = await reply.receive(timeout=1)
        assert answer.startswith(FAILED_REPLY_PREFIX)
        assert "disk error" in answer
        assert worker.control.processed == 0
        await worker.close()
