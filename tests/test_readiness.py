"""Readiness prober tests against real loopback sockets."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from rundev.exceptions import StartupTimeout
from rundev.models import SandboxHandle
from rundev.readiness import ReadinessProber, answers_http, can_connect
from tests.provisioners.fake_provisioner import unused_port

pytestmark = pytest.mark.asyncio


async def _hang_up(reader, writer) -> None:
    writer.close()


class _ExitedProcess:
    returncode = 1


async def test_can_connect() -> None:
    server = await asyncio.start_server(_hang_up, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        assert await can_connect("127.0.0.1", port)
    finally:
        server.close()
        await server.wait_closed()

    assert not await can_connect("127.0.0.1", unused_port(), timeout=0.2)


async def test_ready_when_port_opens_later() -> None:
    port = unused_port()
    handle = SandboxHandle(backend="fake", unit_id="late", host="127.0.0.1", port=port)
    prober = ReadinessProber(interval=0.02, connect_timeout=0.2)

    async def open_later():
        await asyncio.sleep(0.1)
        return await asyncio.start_server(_hang_up, "127.0.0.1", port)

    opener = asyncio.create_task(open_later())
    await prober.wait_until_ready(handle, timeout=3.0)
    server = await opener
    server.close()
    await server.wait_closed()


async def test_timeout() -> None:
    handle = SandboxHandle(backend="fake", unit_id="never", host="127.0.0.1", port=unused_port())
    prober = ReadinessProber(interval=0.02, connect_timeout=0.1)

    with pytest.raises(StartupTimeout) as exc_info:
        await prober.wait_until_ready(handle, timeout=0.2)

    assert exc_info.value.timeout_seconds == 0.2


async def test_exited_process_fails_fast() -> None:
    handle = SandboxHandle(
        backend="fake",
        unit_id="crashed",
        host="127.0.0.1",
        port=unused_port(),
        process=_ExitedProcess(),
    )

    with pytest.raises(StartupTimeout) as exc_info:
        await ReadinessProber().wait_until_ready(handle, timeout=10.0)

    assert exc_info.value.exit_code == 1


async def test_abandoned_probe_stops() -> None:
    handle = SandboxHandle(backend="fake", unit_id="stopped", host="127.0.0.1", port=unused_port())

    with pytest.raises(StartupTimeout, match="abandoned"):
        await ReadinessProber().wait_until_ready(handle, timeout=10.0, abandoned=lambda: True)


async def test_marker_alone_is_not_ready() -> None:
    hint = asyncio.Event()
    hint.set()
    handle = SandboxHandle(
        backend="fake",
        unit_id="marker-only",
        host="127.0.0.1",
        port=unused_port(),
        ready_hint=hint,
    )
    prober = ReadinessProber(interval=0.02, connect_timeout=0.1)

    with pytest.raises(StartupTimeout):
        await prober.wait_until_ready(handle, timeout=0.2)


def _answer(status_line: bytes):
    async def respond(reader, writer) -> None:
        await reader.readuntil(b"\r\n\r\n")
        writer.write(status_line + b"\r\nContent-Length: 0\r\nConnection: close\r\n\r\n")
        await writer.drain()
        writer.close()

    return respond


async def _serve(handler):
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


class TestHttpReadiness:
    """Handles in "http" mode need a served response, not just an open port."""

    async def test_accepting_socket_is_not_ready(self) -> None:
        server, port = await _serve(_hang_up)
        handle = SandboxHandle(
            backend="container", unit_id="published", host="127.0.0.1", port=port, readiness="http"
        )
        try:
            with pytest.raises(StartupTimeout):
                await ReadinessProber(interval=0.02, connect_timeout=0.2).wait_until_ready(
                    handle, timeout=0.3
                )
        finally:
            server.close()
            await server.wait_closed()

    async def test_http_answer_is_ready(self) -> None:
        server, port = await _serve(_answer(b"HTTP/1.1 200 OK"))
        handle = SandboxHandle(
            backend="container", unit_id="serving", host="127.0.0.1", port=port, readiness="http"
        )
        try:
            await ReadinessProber(interval=0.02, connect_timeout=0.5).wait_until_ready(
                handle, timeout=3.0
            )
        finally:
            server.close()
            await server.wait_closed()

    async def test_not_found_counts_as_serving(self) -> None:
        server, port = await _serve(_answer(b"HTTP/1.1 404 Not Found"))
        try:
            async with httpx.AsyncClient(trust_env=False) as client:
                assert await answers_http(client, f"http://127.0.0.1:{port}/")
        finally:
            server.close()
            await server.wait_closed()

    async def test_edge_error_is_not_ready(self) -> None:
        server, port = await _serve(_answer(b"HTTP/1.1 502 Bad Gateway"))
        handle = SandboxHandle(
            backend="fly", unit_id="edge", host="127.0.0.1", port=port, readiness="http"
        )
        try:
            with pytest.raises(StartupTimeout):
                await ReadinessProber(interval=0.02, connect_timeout=0.5).wait_until_ready(
                    handle, timeout=0.3
                )
        finally:
            server.close()
            await server.wait_closed()
