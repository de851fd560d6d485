"""
Reverse proxy from public paths to session dev servers.

Requests under the route prefix carry the session id as their first
path segment; the id is stripped before forwarding and remembered in
an affinity cookie. Root-level paths on the allow-list (absolute asset
and HMR paths the dev server emits) are routed by that cookie alone.
WebSocket upgrades on the same paths are relayed frame by frame.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Iterable, List, Optional, Tuple

import httpx
import websockets
from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from starlette.background import BackgroundTask
from starlette.responses import Response, StreamingResponse

from rundev.exceptions import BackendUnavailable, RouteNotFound
from rundev.lifecycle import LifecycleManager
from rundev.routing import Route, resolve_cookie, resolve_prefixed
from rundev.server.config import Settings
from rundev.server.dependencies import get_manager

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

UPGRADE_INSECURE = "upgrade-insecure-requests"

# Close code for policy violations (no routable session)
WS_POLICY_VIOLATION = 1008
WS_INTERNAL_ERROR = 1011


def _forward_headers(pairs: Iterable[Tuple[str, str]], drop: Iterable[str] = ()) -> List[Tuple[str, str]]:
    skip = HOP_BY_HOP_HEADERS.union(h.lower() for h in drop)
    return [(k, v) for k, v in pairs if k.lower() not in skip]


def merge_csp(existing: Optional[str]) -> str:
    """Add ``upgrade-insecure-requests`` to a Content-Security-Policy value."""
    if not existing:
        return UPGRADE_INSECURE
    directives = [d.strip() for d in existing.split(";") if d.strip()]
    if any(d.lower() == UPGRADE_INSECURE for d in directives):
        return existing
    return "; ".join(directives + [UPGRADE_INSECURE])


def upstream_url(route: Route, query: str, scheme: str = "http") -> str:
    handle = route.session.handle
    if scheme == "ws":
        scheme = "wss" if handle.port == 443 else "ws"
        url = f"{scheme}://{handle.host}:{handle.port}{route.path}"
    else:
        url = f"{handle.base_url}{route.path}"
    return f"{url}?{query}" if query else url


class DevProxy:
    """Forwards HTTP and WebSocket traffic to a routed session."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def session_cookie(self, connection: Any) -> Optional[str]:
        return connection.cookies.get(self.settings.affinity_cookie)

    async def forward_http(self, request: Request, route: Route) -> Response:
        client: httpx.AsyncClient = request.app.state.http_client
        session_id = route.session.session_id
        url = upstream_url(route, request.url.query)

        headers = _forward_headers(request.headers.items(), drop=("host", "content-length"))
        headers.append(("x-forwarded-host", request.headers.get("host", "")))
        headers.append(("x-forwarded-proto", request.url.scheme))
        if request.client is not None:
            headers.append(("x-forwarded-for", request.client.host))

        upstream_request = client.build_request(
            request.method,
            url,
            headers=headers,
            content=await request.body() or None,
        )
        try:
            upstream = await client.send(upstream_request, stream=True)
        except httpx.RequestError as e:
            detail = str(e) or type(e).__name__
            logger.warning("Proxy to session %s failed: %s", session_id, detail)
            raise BackendUnavailable(
                f"Failed to reach dev server for session {session_id}: {detail}"
            ) from e

        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        for key, value in _forward_headers(upstream.headers.multi_items()):
            response.headers.append(key, value)

        if self.settings.force_secure_subresources:
            response.headers["content-security-policy"] = merge_csp(
                response.headers.get("content-security-policy")
            )

        if route.by_path:
            response.set_cookie(
                key=self.settings.affinity_cookie,
                value=session_id,
                max_age=int(self.settings.session_timeout_seconds),
                path="/",
                httponly=True,
                samesite="lax",
                secure=self.settings.force_secure_subresources,
            )
        return response

    async def relay_websocket(self, websocket: WebSocket, resolve: Callable[[], Route]) -> None:
        try:
            route = resolve()
        except RouteNotFound as e:
            await websocket.close(code=WS_POLICY_VIOLATION, reason=e.message)
            return

        target = upstream_url(route, websocket.url.query, scheme="ws")
        requested = websocket.headers.get("sec-websocket-protocol")
        subprotocols = [p.strip() for p in requested.split(",")] if requested else None

        try:
            upstream = await websockets.connect(
                target,
                subprotocols=subprotocols,
                open_timeout=10,
                max_size=None,
                proxy=None,
            )
        except (OSError, asyncio.TimeoutError, websockets.InvalidHandshake) as e:
            logger.warning(
                "WebSocket upstream for session %s unavailable: %s",
                route.session.session_id,
                e,
            )
            await websocket.close(code=WS_INTERNAL_ERROR, reason="Backend unavailable")
            return

        await websocket.accept(subprotocol=upstream.subprotocol)
        try:
            await _run_relay_pair(
                lambda: _browser_to_upstream(websocket, upstream),
                lambda: _upstream_to_browser(websocket, upstream),
            )
        finally:
            with contextlib.suppress(Exception):
                await upstream.close()
            with contextlib.suppress(Exception):
                await websocket.close()


async def _run_relay_pair(browser_to_upstream: Any, upstream_to_browser: Any) -> None:
    """Run both relay directions; when one ends, cancel the other."""
    tasks = [
        asyncio.create_task(browser_to_upstream()),
        asyncio.create_task(upstream_to_browser()),
    ]
    _done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def _browser_to_upstream(websocket: WebSocket, upstream: Any) -> None:
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                await upstream.send(message["bytes"])
            elif message.get("text") is not None:
                await upstream.send(message["text"])
    except WebSocketDisconnect:
        pass
    except websockets.ConnectionClosed as e:
        logger.debug("Upstream closed while relaying: %s", e)


async def _upstream_to_browser(websocket: WebSocket, upstream: Any) -> None:
    try:
        async for message in upstream:
            if isinstance(message, bytes):
                await websocket.send_bytes(message)
            else:
                await websocket.send_text(message)
    except websockets.ConnectionClosed as e:
        logger.debug("Upstream closed while relaying: %s", e)


def build_proxy_router(settings: Settings) -> APIRouter:
    """
    Build the catch-all proxy routes for the configured prefix and
    root allow-list.
    """
    router = APIRouter(tags=["proxy"], include_in_schema=False)
    proxy = DevProxy(settings)
    prefix = settings.route_prefix

    async def prefixed_http(request: Request, rest: str = "") -> Response:
        manager = get_manager(request)
        route = resolve_prefixed(manager.registry, rest, proxy.session_cookie(request))
        return await proxy.forward_http(request, route)

    async def root_http(request: Request, rest: str = "") -> Response:
        manager = get_manager(request)
        route = resolve_cookie(
            manager.registry, proxy.session_cookie(request), request.url.path
        )
        return await proxy.forward_http(request, route)

    async def prefixed_ws(websocket: WebSocket, rest: str = "") -> None:
        manager: LifecycleManager = websocket.app.state.manager
        await proxy.relay_websocket(
            websocket,
            lambda: resolve_prefixed(
                manager.registry, rest, proxy.session_cookie(websocket)
            ),
        )

    async def root_ws(websocket: WebSocket, rest: str = "") -> None:
        manager: LifecycleManager = websocket.app.state.manager
        await proxy.relay_websocket(
            websocket,
            lambda: resolve_cookie(
                manager.registry, proxy.session_cookie(websocket), websocket.url.path
            ),
        )

    router.add_api_route(f"{prefix}/{{rest:path}}", prefixed_http, methods=PROXY_METHODS)
    router.add_api_websocket_route(f"{prefix}/{{rest:path}}", prefixed_ws)

    for root in settings.proxy_root_paths:
        router.add_api_route(root, root_http, methods=PROXY_METHODS)
        router.add_api_route(f"{root}/{{rest:path}}", root_http, methods=PROXY_METHODS)
        router.add_api_websocket_route(root, root_ws)
        router.add_api_websocket_route(f"{root}/{{rest:path}}", root_ws)

    return router
