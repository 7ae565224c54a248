"""
日志模块 - 缓存层统一日志输出

级别与颜色：
- DEBUG:    灰色 - 存储 / 网络细节
- INFO:     白色 - 一般信息
- ROUTE:    青色 - 请求分流决策（network-only / cache-first / passthrough）
- SUCCESS:  绿色 - 安装、激活、同步完成
- FALLBACK: 黄色 - 降级（过期缓存 / 合成离线响应）
- WARNING:  橙色 - 非致命失败
- ERROR:    红色 - 安装失败、存储错误
- CRITICAL: 红色加粗

组件标签：
消息以 "[POLICY] ..." 这样的前缀开头时，前缀会被拆成独立的 tag 字段，
文本输出中单独着色，JSON 输出中作为 "tag" 键。

环境变量：
- LOG_LEVEL   最低输出级别（默认 info）
- LOG_FORMAT  text（默认）或 json
- LOG_FILE    追加写入的日志文件（为空则不写文件）
- NO_COLOR / FORCE_COLOR  关闭 / 强制颜色
"""

import json
import os
import re
import sys
import threading
from datetime import datetime
from typing import Any, Dict, NamedTuple, Optional, Tuple


class Colors:
    """ANSI 颜色代码"""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    YELLOW = "\033[33m"
    WHITE = "\033[37m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_MAGENTA = "\033[95m"
    BRIGHT_CYAN = "\033[96m"


class LevelStyle(NamedTuple):
    rank: int
    color: str
    label: str


LEVELS: Dict[str, LevelStyle] = {
    "debug": LevelStyle(0, Colors.DIM + Colors.WHITE, "DEBUG"),
    "info": LevelStyle(1, Colors.WHITE, "INFO"),
    "route": LevelStyle(1, Colors.BRIGHT_CYAN, "ROUTE"),
    "success": LevelStyle(1, Colors.BRIGHT_GREEN, "SUCCESS"),
    "fallback": LevelStyle(2, Colors.BRIGHT_YELLOW, "FALLBACK"),
    "warning": LevelStyle(3, Colors.YELLOW + Colors.BOLD, "WARNING"),
    "error": LevelStyle(4, Colors.RED, "ERROR"),
    "critical": LevelStyle(5, Colors.BRIGHT_RED + Colors.BOLD, "CRITICAL"),
}

LOG_LEVELS = {name: style.rank for name, style in LEVELS.items()}

_TAG_PREFIX = re.compile(r"^\[([A-Z][A-Z0-9_]*)\]\s*")


def _detect_color() -> bool:
    if os.getenv("NO_COLOR"):
        return False
    if os.getenv("FORCE_COLOR"):
        return True
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def split_tag(message: str, tag: Optional[str] = None) -> Tuple[Optional[str], str]:
    """把消息开头的 "[TAG]" 拆出来；显式传入的 tag 优先"""
    match = _TAG_PREFIX.match(message)
    if match is None:
        return tag, message
    return tag or match.group(1), message[match.end():]


class Logger:
    """
    缓存层日志器

    Usage:
        from log import log
        log.route("[POLICY] cache hit GET https://example/app.js")
        log.error("[LIFECYCLE] Cache failed", generation="saudi-music-db-v2")
    """

    def __init__(self):
        self._color = _detect_color()
        self._file_lock = threading.Lock()
        self._file_broken = False

    # ==================== 配置 ====================

    @staticmethod
    def _threshold() -> int:
        name = os.getenv("LOG_LEVEL", "info").lower()
        return LOG_LEVELS.get(name, LOG_LEVELS["info"])

    def get_current_level(self) -> str:
        threshold = self._threshold()
        return next((name for name, rank in LOG_LEVELS.items() if rank == threshold), "info")

    def is_color_enabled(self) -> bool:
        return self._color

    def set_color_enabled(self, enabled: bool):
        self._color = enabled

    def is_structured_enabled(self) -> bool:
        return os.getenv("LOG_FORMAT", "text").lower() == "json"

    # ==================== 输出 ====================

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{Colors.RESET}" if self._color else text

    def _render_text(self, when: datetime, style: LevelStyle, tag: Optional[str],
                     message: str, extra: Dict[str, Any], colored: bool) -> str:
        clock = f"[{when:%H:%M:%S}]"
        parts = [f"{Colors.DIM}{clock}{Colors.RESET}" if colored else clock]
        parts.append(self._paint(f"[{style.label}]", style.color) if colored else f"[{style.label}]")
        if tag:
            parts.append(self._paint(f"[{tag}]", Colors.BRIGHT_MAGENTA) if colored else f"[{tag}]")
        parts.append(message)
        line = " ".join(parts)
        if extra:
            fields = " ".join(f"{key}={value}" for key, value in extra.items())
            line += f" {Colors.DIM}| {fields}{Colors.RESET}" if colored else f" | {fields}"
        return line

    @staticmethod
    def _render_json(when: datetime, style: LevelStyle, tag: Optional[str],
                     message: str, extra: Dict[str, Any]) -> str:
        record: Dict[str, Any] = {"timestamp": when.isoformat(), "level": style.label}
        if tag:
            record["tag"] = tag
        record["message"] = message
        record.update(extra)
        return json.dumps(record, ensure_ascii=False, default=str)

    def _append_file(self, line: str):
        path = os.getenv("LOG_FILE")
        if not path or self._file_broken:
            return
        try:
            with self._file_lock, open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            self._file_broken = True
            print(f"Warning: log file disabled ({path}): {e}", file=sys.stderr)

    def emit(self, level: str, message: str, tag: Optional[str] = None, **extra):
        """
        输出一条日志

        Args:
            level: 日志级别名称
            message: 消息，可带 "[TAG]" 前缀
            tag: 显式组件标签
            **extra: 结构化字段（cache_key, generation, status 等）
        """
        style = LEVELS.get(level.lower())
        if style is None:
            print(f"Warning: Unknown log level '{level}'", file=sys.stderr)
            return
        if style.rank < self._threshold():
            return

        tag, message = split_tag(message, tag)
        when = datetime.now()
        stream = sys.stderr if style.rank >= LOG_LEVELS["error"] else sys.stdout

        if self.is_structured_enabled():
            line = self._render_json(when, style, tag, message, extra)
            print(line, file=stream)
        else:
            print(self._render_text(when, style, tag, message, extra, colored=self._color), file=stream)
            line = self._render_text(when, style, tag, message, extra, colored=False)
        self._append_file(line)

    __call__ = emit

    def debug(self, message: str, tag: Optional[str] = None, **extra):
        self.emit("debug", message, tag, **extra)

    def info(self, message: str, tag: Optional[str] = None, **extra):
        self.emit("info", message, tag, **extra)

    def route(self, message: str, tag: Optional[str] = None, **extra):
        self.emit("route", message, tag, **extra)

    def success(self, message: str, tag: Optional[str] = None, **extra):
        self.emit("success", message, tag, **extra)

    def fallback(self, message: str, tag: Optional[str] = None, **extra):
        self.emit("fallback", message, tag, **extra)

    def warning(self, message: str, tag: Optional[str] = None, **extra):
        self.emit("warning", message, tag, **extra)

    def error(self, message: str, tag: Optional[str] = None, **extra):
        self.emit("error", message, tag, **extra)

    def critical(self, message: str, tag: Optional[str] = None, **extra):
        self.emit("critical", message, tag, **extra)


log = Logger()

__all__ = [
    "log",
    "Logger",
    "LOG_LEVELS",
    "Colors",
    "split_tag",
]
