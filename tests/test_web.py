"""
Web 集成测试 - 通过 FastAPI TestClient 访问本地缓存代理
"""

import pytest
from fastapi.testclient import TestClient

from web import create_app

from .conftest import SHEETS_URL, make_settings


@pytest.fixture
def client(origin):
    app = create_app(make_settings(), transport=origin.transport)
    with TestClient(app) as test_client:
        yield test_client


class TestProxy:
    """测试代理路由"""

    def test_startup_installs_app_shell(self, client):
        status = client.get("/__cache/status").json()

        assert status["state"] == "activated"
        assert status["current_generation"] == "saudi-music-db-v1"
        assert status["stores"] == ["saudi-music-db-v1"]

    def test_serves_cached_shell_offline(self, client, origin):
        origin.offline = True

        response = client.get("/styles.css")

        assert response.status_code == 200
        assert response.text == "body { direction: rtl; }"
        assert response.headers["content-type"] == "text/css"

    def test_offline_miss_returns_503(self, client, origin):
        origin.offline = True

        response = client.get("/artists/42")

        assert response.status_code == 503
        assert response.text == "Offline - Please check your connection"

    def test_head_request_has_no_body(self, client):
        response = client.head("/index.html")

        assert response.status_code == 200
        assert response.content == b""


class TestFetchEndpoint:
    """测试任意 URL 通过缓存层请求"""

    def test_network_only_header(self, client):
        response = client.get("/__cache/fetch", params={"url": SHEETS_URL})

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, max-age=180"

    def test_network_only_unreachable_is_504(self, client, origin):
        origin.offline = True

        response = client.get("/__cache/fetch", params={"url": SHEETS_URL})

        assert response.status_code == 504
        assert response.json()["error"] == "upstream_unreachable"


class TestControlEndpoints:
    """测试控制端点"""

    def test_clear_message(self, client):
        response = client.post("/__cache/message", json={"type": "CLEAR"})

        assert response.json() == {"command": "CLEAR", "reply": "Cache cleared"}
        assert client.get("/__cache/status").json()["stores"] == []

    def test_malformed_message_ignored(self, client):
        response = client.post("/__cache/message", content=b"garbage")

        assert response.status_code == 200
        assert response.json() == {"command": None, "reply": None}

    def test_sync_is_accepted(self, client):
        response = client.post("/__cache/sync", json={"tag": "background-sync"})

        assert response.status_code == 202

    def test_push_is_accepted(self, client):
        response = client.post("/__cache/push", json={"data": "New event tonight"})

        assert response.status_code == 202

    def test_connect_client_is_controlled(self, client):
        response = client.post("/__cache/clients")

        assert response.status_code == 201
        assert response.json()["controller"] == "saudi-music-db-v1"
