"""
Request / Response value types
请求与响应的值类型

Responses are immutable snapshots: the body is plain bytes, so the same
snapshot can be returned to the caller and written to the store at once.
Any header rewrite produces a new snapshot via ``dataclasses.replace``.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

import httpx

HeaderItems = Tuple[Tuple[str, str], ...]

OFFLINE_BODY = b"Offline - Please check your connection"

# httpx 已解码响应体，这些描述原始传输帧的头不再与 body 对应
DECODED_BODY_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})

# response_type 取值，与浏览器 Response.type 对齐
RESPONSE_BASIC = "basic"
RESPONSE_CORS = "cors"


def _normalize_headers(headers: Union[Mapping[str, str], Iterable[Tuple[str, str]], None]) -> HeaderItems:
    if headers is None:
        return ()
    items = headers.items() if isinstance(headers, Mapping) else headers
    return tuple((str(k).lower(), str(v)) for k, v in items)


@dataclass(frozen=True)
class CacheRequest:
    """
    An intercepted outbound request.

    Attributes:
        url: absolute URL
        method: HTTP method (upper case)
        headers: lower-cased header pairs
        body: request body, only forwarded for non-GET requests
    """
    url: str
    method: str = "GET"
    headers: HeaderItems = ()
    body: bytes = b""

    @classmethod
    def create(
        cls,
        url: str,
        method: str = "GET",
        headers: Union[Mapping[str, str], Iterable[Tuple[str, str]], None] = None,
        body: bytes = b"",
        origin: Optional[str] = None,
    ) -> "CacheRequest":
        """Build a request, resolving a relative ``url`` against ``origin``."""
        if origin and not url.startswith(("http://", "https://")):
            url = str(httpx.URL(origin).join(url))
        return cls(url=url, method=method.upper(), headers=_normalize_headers(headers), body=body)

    @property
    def cache_key(self) -> str:
        """Normalized identity used as the store key (fragment stripped)."""
        return f"{self.method} {self.url.split('#', 1)[0]}"

    @property
    def host(self) -> str:
        return httpx.URL(self.url).host

    @property
    def origin(self) -> str:
        parsed = httpx.URL(self.url)
        port = f":{parsed.port}" if parsed.port else ""
        return f"{parsed.scheme}://{parsed.host}{port}"

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers:
            if key == name:
                return value
        return default


@dataclass(frozen=True)
class ResponseSnapshot:
    """
    Immutable response value
    不可变响应快照

    Attributes:
        status: HTTP status code
        status_text: reason phrase
        headers: lower-cased header pairs
        body: full response body
        url: final URL the response came from
        response_type: "basic" (same-origin) or "cors" (cross-origin)
        captured_at: epoch seconds when written to the store (None = unknown)
    """
    status: int
    status_text: str = ""
    headers: HeaderItems = ()
    body: bytes = b""
    url: str = ""
    response_type: str = RESPONSE_BASIC
    captured_at: Optional[float] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_partial(self) -> bool:
        return self.status == 206 or self.header("content-range") is not None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers:
            if key == name:
                return value
        return default

    def with_header(self, name: str, value: str) -> "ResponseSnapshot":
        """Return a copy with ``name`` set to ``value`` (replacing any existing value)."""
        name = name.lower()
        headers = tuple((k, v) for k, v in self.headers if k != name) + ((name, value),)
        return replace(self, headers=headers)

    def stamped(self, captured_at: float) -> "ResponseSnapshot":
        return replace(self, captured_at=captured_at)

    def age(self, now: float) -> Optional[float]:
        if self.captured_at is None:
            return None
        return now - self.captured_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (body excluded) for status output"""
        return {
            "status": self.status,
            "status_text": self.status_text,
            "headers": dict(self.headers),
            "url": self.url,
            "response_type": self.response_type,
            "captured_at": self.captured_at,
            "size": len(self.body),
        }

    @classmethod
    def from_httpx(cls, response: httpx.Response, url: str, response_type: str = RESPONSE_BASIC) -> "ResponseSnapshot":
        return cls(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=tuple(
                (k, v) for k, v in _normalize_headers(response.headers.multi_items())
                if k not in DECODED_BODY_HEADERS
            ),
            body=response.content,
            url=url,
            response_type=response_type,
        )


def offline_response() -> ResponseSnapshot:
    """离线时合成的 503 响应"""
    return ResponseSnapshot(
        status=503,
        status_text="Service Unavailable",
        headers=(("content-type", "text/plain; charset=utf-8"),),
        body=OFFLINE_BODY,
        response_type=RESPONSE_BASIC,
    )


__all__ = [
    "CacheRequest",
    "ResponseSnapshot",
    "offline_response",
    "OFFLINE_BODY",
    "RESPONSE_BASIC",
    "RESPONSE_CORS",
]
