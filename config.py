"""
Configuration for the swcache request-interception cache.
Centralizes all configuration so that every cache instance receives its
settings explicitly instead of reading module-level constants.

- 优先级: 环境变量 > YAML 配置文件 > 默认值
- YAML 中支持 ${VAR:default} 形式的环境变量展开
"""

import json
import os
import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from log import log

DEFAULT_CACHE_NAME = "saudi-music-db-v1"
DEFAULT_EXPIRY_SECONDS = 24 * 60 * 60
DEFAULT_NETWORK_ONLY_MAX_AGE = 180
DEFAULT_NETWORK_ONLY_HOST = "sheets.googleapis.com"

DEFAULT_MANIFEST: Tuple[str, ...] = (
    "/",
    "/index.html",
    "/styles.css",
    "/app.js",
    "/GOASTFLOWER_LOGO.png",
    "https://fonts.googleapis.com/css2?family=Amiri:wght@400;700"
    "&family=Tajawal:wght@300;400;500;700&display=swap",
)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config" / "cache.yaml"


@dataclass(frozen=True)
class CacheSettings:
    """
    缓存层配置

    Attributes:
        cache_name: 当前代（generation）的名称，修改它即强制刷新静态资源
        expiry_seconds: cache-first 条目的有效期
        network_only_max_age: network-only 响应改写后的 max-age
        network_only_host: 命中即走 network-only 的目标主机子串
        origin: 应用自身的源，用于解析相对路径和判断同源
        manifest: 安装时必须预缓存的 app shell 资源
        db_path: SQLite 存储路径（None 表示使用内存存储）
        sync_tag: 后台同步识别的标签
        notification_title: 推送通知标题
        notification_icon: 推送通知图标 / badge
        proxy: 出站代理
        request_timeout: 网络层超时（秒），None 表示不设超时
    """
    cache_name: str = DEFAULT_CACHE_NAME
    expiry_seconds: float = DEFAULT_EXPIRY_SECONDS
    network_only_max_age: int = DEFAULT_NETWORK_ONLY_MAX_AGE
    network_only_host: str = DEFAULT_NETWORK_ONLY_HOST
    origin: str = "http://127.0.0.1:8000"
    manifest: Tuple[str, ...] = DEFAULT_MANIFEST
    db_path: Optional[str] = "data/offline_cache.db"
    sync_tag: str = "background-sync"
    notification_title: str = "Saudi Music Database"
    notification_icon: str = "/GOASTFLOWER_LOGO.png"
    proxy: Optional[str] = None
    request_timeout: Optional[float] = 30.0
    host: str = "0.0.0.0"
    port: int = 7861

    @property
    def network_only_cache_control(self) -> str:
        return f"public, max-age={self.network_only_max_age}"

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors"""
        errors = []

        if not self.cache_name:
            errors.append("cache_name must not be empty")

        if self.expiry_seconds <= 0:
            errors.append("expiry_seconds must be > 0")

        if self.network_only_max_age < 0:
            errors.append("network_only_max_age must be >= 0")

        if not self.network_only_host:
            errors.append("network_only_host must not be empty")

        if not self.origin.startswith(("http://", "https://")):
            errors.append("origin must be an absolute http(s) URL")

        if self.request_timeout is not None and self.request_timeout <= 0:
            errors.append("request_timeout must be > 0 or None")

        return errors


# 环境变量名 -> 配置字段
ENV_OVERRIDES: Dict[str, str] = {
    "CACHE_NAME": "cache_name",
    "CACHE_EXPIRY_SECONDS": "expiry_seconds",
    "NETWORK_ONLY_MAX_AGE": "network_only_max_age",
    "NETWORK_ONLY_HOST": "network_only_host",
    "APP_ORIGIN": "origin",
    "CACHE_MANIFEST": "manifest",
    "CACHE_DB_PATH": "db_path",
    "SYNC_TAG": "sync_tag",
    "NOTIFICATION_TITLE": "notification_title",
    "NOTIFICATION_ICON": "notification_icon",
    "PROXY": "proxy",
    "REQUEST_TIMEOUT": "request_timeout",
    "HOST": "host",
    "PORT": "port",
}


def expand_env_vars(value: Any) -> Any:
    """
    递归展开环境变量

    支持语法：${VAR_NAME:default_value}

    Examples:
        >>> os.environ["TEST_VAR"] = "hello"
        >>> expand_env_vars("${TEST_VAR:world}")
        'hello'
        >>> expand_env_vars("${MISSING_VAR:42}")
        42
    """
    if isinstance(value, str):
        pattern = r'\$\{([A-Za-z_][A-Za-z0-9_]*?)(?::([^}]*))?\}'

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else ""
            return os.getenv(var_name, default_value)

        if not re.search(pattern, value):
            return value

        result = re.sub(pattern, replacer, value)

        if result.lower() in ("true", "yes"):
            return True
        elif result.lower() in ("false", "no"):
            return False

        try:
            if "." in result:
                return float(result)
            return int(result)
        except ValueError:
            pass

        if result.startswith("[") and result.endswith("]"):
            try:
                return json.loads(result)
            except ValueError:
                pass

        return result

    elif isinstance(value, list):
        return [expand_env_vars(item) for item in value]

    elif isinstance(value, dict):
        return {key: expand_env_vars(val) for key, val in value.items()}

    return value


def _coerce(name: str, raw: Any) -> Any:
    """按字段类型转换原始值"""
    if name == "manifest":
        if isinstance(raw, str):
            raw = json.loads(raw)
        if not isinstance(raw, (list, tuple)):
            raise ValueError("manifest must be a list of resource paths")
        return tuple(str(item) for item in raw)
    if name in ("db_path", "proxy", "request_timeout"):
        if raw is None or (isinstance(raw, str) and raw.strip().lower() in ("", "none", "null")):
            return None
        return float(raw) if name == "request_timeout" else str(raw)
    if name in ("expiry_seconds",):
        return float(raw)
    if name in ("network_only_max_age", "port"):
        return int(raw)
    return str(raw)


def load_yaml_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    从 YAML 文件读取缓存配置（文件不存在时返回空字典）

    文件格式:
        cache:
          cache_name: ${CACHE_NAME:saudi-music-db-v2}
          expiry_seconds: 86400
    """
    path = Path(config_path) if config_path else Path(os.getenv("SWCACHE_CONFIG", DEFAULT_CONFIG_PATH))
    if not path.exists():
        return {}

    with open(path, "r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f) or {}

    if not isinstance(raw_config, dict):
        raise ValueError(f"配置文件格式错误: {path}")

    section = raw_config.get("cache", raw_config)
    if not isinstance(section, dict):
        raise ValueError("配置文件格式错误：'cache' 必须是字典")

    return expand_env_vars(section)


def load_settings(config_path: Optional[str] = None, **overrides: Any) -> CacheSettings:
    """
    Build CacheSettings with priority: overrides > ENV > YAML > default.

    Raises:
        ValueError: 配置值无法转换或未通过校验
    """
    known = {f.name for f in fields(CacheSettings)}
    values: Dict[str, Any] = {}

    for key, raw in load_yaml_config(config_path).items():
        if key not in known:
            log.warning(f"[CONFIG] Unknown config key ignored: {key}")
            continue
        values[key] = _coerce(key, raw)

    for env_var, key in ENV_OVERRIDES.items():
        env_value = os.getenv(env_var)
        if env_value:
            try:
                values[key] = _coerce(key, env_value)
            except ValueError as e:
                log.warning(f"[CONFIG] Invalid {env_var}={env_value!r}: {e}")

    values.update(overrides)
    settings = replace(CacheSettings(), **values)

    errors = settings.validate()
    if errors:
        raise ValueError("Invalid cache settings: " + "; ".join(errors))

    return settings


__all__ = [
    "CacheSettings",
    "DEFAULT_MANIFEST",
    "expand_env_vars",
    "load_yaml_config",
    "load_settings",
]
