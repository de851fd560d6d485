"""
Reverse proxy tests.

Upstream dev servers are replaced by an httpx MockTransport for HTTP and
a real websockets echo server for WebSocket relaying.
"""

from __future__ import annotations

import threading

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from websockets.sync.server import serve

from rundev.allocator import PortAllocator
from rundev.lifecycle import LifecycleConfig, LifecycleManager
from rundev.readiness import ReadinessProber
from rundev.server import create_app
from rundev.server.config import Settings, reset_settings
from rundev.server.routers.proxy import merge_csp
from tests.conftest import TEST_API_KEY
from tests.provisioners.fake_provisioner import FakeProvisioner

AUTH = {"X-API-Key": TEST_API_KEY}

START_BODY = {
    "appId": "app-1",
    "merchantName": "acme",
    "tapcartCliApiKey": "cli-key",
    "codeJsx": "export default () => null",
    "appStudioBlockName": "blk",
    "configurationId": 42,
}


class Upstream:
    """Records forwarded requests and answers like a dev server."""

    def __init__(self, headers=None, fail: bool = False) -> None:
        self.requests = []
        if isinstance(headers, dict):
            headers = list(headers.items())
        self.headers = list(headers or [])
        self.fail = fail

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            raise httpx.ConnectError("Connection refused", request=request)
        return httpx.Response(
            200,
            headers=[("content-type", "text/plain")] + self.headers,
            content=f"served {request.url.path}".encode(),
        )


def make_client(upstream: Upstream, provisioner: FakeProvisioner = None) -> TestClient:
    reset_settings()
    settings = Settings()
    manager = LifecycleManager(
        provisioner or FakeProvisioner(),
        PortAllocator(5100, 5101, check_bind=False),
        prober=ReadinessProber(interval=0.02, connect_timeout=0.2),
        config=LifecycleConfig(public_url=settings.public_url, startup_timeout_seconds=1.0),
    )
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app = create_app(settings=settings, manager=manager, http_client=http_client)
    return TestClient(app)


def start_session(client: TestClient) -> str:
    response = client.post("/start-dev", json=START_BODY, headers=AUTH)
    assert response.status_code == 200
    return response.json()["sessionId"]


class TestHttpProxy:
    def test_prefixed_request_strips_session_id(self):
        upstream = Upstream()
        with make_client(upstream) as client:
            session_id = start_session(client)

            response = client.get(f"/dev/{session_id}/src/main.jsx?v=1")

        assert response.status_code == 200
        assert response.text == "served /src/main.jsx"
        forwarded = upstream.requests[0]
        assert forwarded.url.path == "/src/main.jsx"
        assert forwarded.url.query == b"v=1"
        assert forwarded.headers["x-forwarded-host"] == "testserver"

    def test_affinity_cookie_issued(self):
        upstream = Upstream()
        with make_client(upstream) as client:
            session_id = start_session(client)

            response = client.get(f"/dev/{session_id}/")

        set_cookie = response.headers["set-cookie"]
        assert f"rundev_session={session_id}" in set_cookie
        assert "HttpOnly" in set_cookie
        assert "SameSite=lax" in set_cookie
        assert "Path=/" in set_cookie
        assert "Max-Age=1800" in set_cookie

    def test_cookie_routes_follow_up_requests(self):
        upstream = Upstream()
        with make_client(upstream) as client:
            session_id = start_session(client)
            client.get(f"/dev/{session_id}/")

            asset = client.get("/dev/other-asset.js")
            vite = client.get("/@vite/client")
            source = client.get("/src/App.jsx")

        assert asset.text == "served /other-asset.js"
        assert "set-cookie" not in asset.headers
        assert vite.text == "served /@vite/client"
        assert source.text == "served /src/App.jsx"

    def test_post_body_forwarded(self):
        upstream = Upstream()
        with make_client(upstream) as client:
            session_id = start_session(client)

            client.post(f"/dev/{session_id}/api/echo", content=b"payload")

        forwarded = upstream.requests[0]
        assert forwarded.method == "POST"
        assert forwarded.content == b"payload"

    def test_no_session(self):
        with make_client(Upstream()) as client:
            response = client.get("/src/main.jsx")

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "No active session"

    def test_expired_cookie(self):
        with make_client(Upstream()) as client:
            client.cookies.set("rundev_session", "gone")

            response = client.get("/src/main.jsx")

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Session expired"

    def test_stopped_session_is_not_routable(self):
        upstream = Upstream()
        with make_client(upstream) as client:
            session_id = start_session(client)
            client.delete(f"/stop-dev/{session_id}", headers=AUTH)

            response = client.get(f"/dev/{session_id}/")

        assert response.status_code == 404
        assert upstream.requests == []

    def test_unreachable_backend_is_502(self):
        with make_client(Upstream(fail=True)) as client:
            session_id = start_session(client)

            response = client.get(f"/dev/{session_id}/")

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "backend_unavailable"

    def test_upstream_set_cookies_preserved(self):
        upstream = Upstream(headers=[("set-cookie", "a=1"), ("set-cookie", "b=2")])
        with make_client(upstream) as client:
            session_id = start_session(client)

            response = client.get(f"/dev/{session_id}/")

        cookies = response.headers.get_list("set-cookie")
        assert any(c.startswith("a=1") for c in cookies)
        assert any(c.startswith("b=2") for c in cookies)
        assert any(c.startswith("rundev_session=") for c in cookies)


class TestSecureSubresources:
    def test_csp_added_for_https_public_url(self, monkeypatch):
        monkeypatch.setenv("RUNDEV_PUBLIC_URL", "https://dev.example.com")
        upstream = Upstream(headers={"content-security-policy": "default-src 'self'"})
        with make_client(upstream) as client:
            session_id = start_session(client)

            response = client.get(f"/dev/{session_id}/")

        assert response.headers["content-security-policy"] == (
            "default-src 'self'; upgrade-insecure-requests"
        )
        assert "Secure" in response.headers["set-cookie"]

    def test_no_csp_for_http_public_url(self):
        with make_client(Upstream()) as client:
            session_id = start_session(client)

            response = client.get(f"/dev/{session_id}/")

        assert "content-security-policy" not in response.headers

    def test_merge_csp(self):
        assert merge_csp(None) == "upgrade-insecure-requests"
        assert merge_csp("upgrade-insecure-requests") == "upgrade-insecure-requests"
        assert merge_csp("img-src *;") == "img-src *; upgrade-insecure-requests"


class TestRouterDisabled:
    def test_proxy_routes_absent(self, monkeypatch):
        monkeypatch.setenv("RUNDEV_ROUTER_ENABLED", "false")
        with make_client(Upstream()) as client:
            response = client.get("/src/main.jsx")

        assert response.status_code == 404
        assert "error" not in response.json()


@pytest.fixture
def echo_server():
    """Threaded websockets echo server speaking the vite-hmr subprotocol."""

    def echo(websocket):
        for message in websocket:
            websocket.send(message)

    server = serve(echo, "127.0.0.1", 0, subprotocols=["vite-hmr"])
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.socket.getsockname()[1]
    server.shutdown()
    thread.join(timeout=5)


class TestWebSocketProxy:
    def test_relays_frames(self, echo_server):
        provisioner = FakeProvisioner(port=echo_server)
        with make_client(Upstream(), provisioner) as client:
            session_id = start_session(client)

            with client.websocket_connect(
                f"/dev/{session_id}/", subprotocols=["vite-hmr"]
            ) as websocket:
                assert websocket.accepted_subprotocol == "vite-hmr"
                websocket.send_text('{"type":"ping"}')
                assert websocket.receive_text() == '{"type":"ping"}'
                websocket.send_bytes(b"\x00\x01")
                assert websocket.receive_bytes() == b"\x00\x01"

    def test_no_session_closes_with_policy_violation(self):
        with make_client(Upstream()) as client:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/socket.io/"):
                    pass

        assert exc_info.value.code == 1008
