"""
Control Channel - 宿主应用的带外控制消息

支持的消息:
- {"type": "FORCE_ACTIVATE"}  立即激活已安装的 generation（兼容旧名 SKIP_WAITING）
- {"type": "CLEAR"}           删除当前 generation 的存储，并通过回复通道返回 "Cache cleared"
                              （兼容旧名 CLEAR_CACHE）

格式错误或未知的消息一律忽略，不会向调用方抛出异常。
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from log import log

from .errors import CacheLayerError, ControlMessageError
from .lifecycle import LifecycleManager

CLEAR_REPLY = "Cache cleared"
FAILED_REPLY_PREFIX = "Cache command failed"


class ControlCommand(str, Enum):
    FORCE_ACTIVATE = "FORCE_ACTIVATE"
    CLEAR = "CLEAR"


# 旧版前端发送的消息名
LEGACY_ALIASES = {
    "SKIP_WAITING": ControlCommand.FORCE_ACTIVATE,
    "CLEAR_CACHE": ControlCommand.CLEAR,
}


class ControlMessage(BaseModel):
    """控制消息结构，只关心 type 字段"""
    model_config = ConfigDict(extra="allow")

    type: str


class ReplyChannel:
    """
    单次回复通道

    发送方持有该对象并 await receive()，控制通道处理完成后调用 post_message()。
    """

    def __init__(self):
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    def post_message(self, message: Any) -> None:
        if not self._future.done():
            self._future.set_result(message)

    @property
    def replied(self) -> bool:
        return self._future.done()

    async def receive(self, timeout: Optional[float] = None) -> Any:
        return await asyncio.wait_for(asyncio.shield(self._future), timeout)


@dataclass
class PendingControlMessage:
    """已解析、等待处理的控制消息（只能被消费一次）"""
    command: ControlCommand
    reply: Optional[ReplyChannel] = None
    consumed: bool = field(default=False, init=False)

    def consume(self) -> ControlCommand:
        if self.consumed:
            raise ControlMessageError(f"{self.command.value} message already consumed")
        self.consumed = True
        return self.command


def parse_control_message(data: Any) -> Optional[ControlCommand]:
    """解析原始消息；无法识别时返回 None"""
    if isinstance(data, (str, bytes)):
        try:
            message = ControlMessage.model_validate_json(data)
        except ValidationError:
            return None
    else:
        try:
            message = ControlMessage.model_validate(data)
        except ValidationError:
            return None

    kind = message.type.strip().upper()
    if kind in LEGACY_ALIASES:
        return LEGACY_ALIASES[kind]
    try:
        return ControlCommand(kind)
    except ValueError:
        return None


class ControlChannel:
    """
    控制消息处理器

    Usage:
        channel = ControlChannel(lifecycle)
        reply = ReplyChannel()
        await channel.handle({"type": "CLEAR"}, reply)
        assert await reply.receive() == "Cache cleared"
    """

    def __init__(self, lifecycle: LifecycleManager):
        self.lifecycle = lifecycle
        self.processed = 0
        self.ignored = 0

    async def handle(self, data: Any, reply: Optional[ReplyChannel] = None) -> Optional[ControlCommand]:
        """处理原始消息，返回识别出的命令（忽略时为 None）"""
        command = parse_control_message(data)
        if command is None:
            self.ignored += 1
            log.debug(f"[CONTROL] Ignoring unrecognized message: {data!r}")
            return None
        await self.dispatch(PendingControlMessage(command, reply))
        return command

    async def dispatch(self, message: PendingControlMessage) -> None:
        try:
            command = message.consume()
            if command is ControlCommand.FORCE_ACTIVATE:
                activated = await self.lifecycle.force_activate()
                log.info("[CONTROL] FORCE_ACTIVATE handled", activated=activated)
            elif command is ControlCommand.CLEAR:
                await self.lifecycle.clear()
                if message.reply is not None:
                    message.reply.post_message(CLEAR_REPLY)
                log.info("[CONTROL] CLEAR handled")
        except CacheLayerError as e:
            log.error(f"[CONTROL] {message.command.value} failed: {e}")
            # 调用方可能正在等待回复，失败也要回答
            if message.reply is not None:
                message.reply.post_message(f"{FAILED_REPLY_PREFIX}: {message.command.value}: {e}")
            return
        self.processed += 1


__all__ = [
    "ControlChannel",
    "ControlCommand",
    "ControlMessage",
    "PendingControlMessage",
    "ReplyChannel",
    "parse_control_message",
    "CLEAR_REPLY",
    "FAILED_REPLY_PREFIX",
]
