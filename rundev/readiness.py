"""
Readiness detection for freshly provisioned sandboxes.

Two signals are combined:
- reachability: the dev server answers on its address
- marker: the sandbox printed its "server started" line (process backend)

Reachability is checked by the handle's ``readiness`` mode. "connect"
opens a raw TCP connection and suits sandboxes on loopback. "http" sends
a GET and wants a non-5xx answer; it is used where something else owns
the listening socket (Docker's port publisher, the Fly edge) and would
accept connections before the dev server is up.

Only reachability declares readiness. The marker is an early hint:
when it fires, the prober skips the rest of its poll interval and tries to
connect immediately.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

import httpx

from rundev.exceptions import StartupTimeout
from rundev.models import SandboxHandle

logger = logging.getLogger(__name__)


async def can_connect(host: str, port: int, timeout: float = 1.0) -> bool:
    """Attempt one TCP connection."""
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True


async def answers_http(client: httpx.AsyncClient, url: str) -> bool:
    """GET ``url``; any non-5xx status means the dev server is serving."""
    try:
        response = await client.get(url)
    except httpx.HTTPError:
        return False
    return response.status_code < 500


class ReadinessProber:
    """Polls a sandbox until its dev server accepts connections."""

    def __init__(self, interval: float = 0.5, connect_timeout: float = 1.0) -> None:
        self.interval = interval
        self.connect_timeout = connect_timeout

    async def wait_until_ready(
        self,
        handle: SandboxHandle,
        timeout: float,
        abandoned: Optional[Callable[[], bool]] = None,
    ) -> None:
        """
        Block until ``handle`` is reachable.

        Args:
            handle: Sandbox to probe.
            timeout: Overall deadline in seconds.
            abandoned: Returns True when the caller no longer wants the
                sandbox (e.g. it was stopped concurrently).

        Raises:
            StartupTimeout: On deadline, on sandbox exit, or when abandoned.
        """
        if handle.readiness == "http":
            async with httpx.AsyncClient(
                timeout=self.connect_timeout, follow_redirects=False, trust_env=False
            ) as client:
                url = f"{handle.base_url}/"
                await self._poll(
                    handle, timeout, abandoned, lambda: answers_http(client, url)
                )
        else:
            await self._poll(
                handle,
                timeout,
                abandoned,
                lambda: can_connect(handle.host, handle.port, self.connect_timeout),
            )

    async def _poll(
        self,
        handle: SandboxHandle,
        timeout: float,
        abandoned: Optional[Callable[[], bool]],
        reachable: Callable[[], Awaitable[bool]],
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempts = 0

        while True:
            exit_code = handle.exit_code
            if exit_code is not None:
                raise StartupTimeout(
                    f"Dev server exited during startup (code {exit_code})",
                    exit_code=exit_code,
                )
            if abandoned is not None and abandoned():
                raise StartupTimeout("Startup abandoned: session was stopped")

            attempts += 1
            if await reachable():
                logger.debug(
                    "%s reachable at %s:%d after %d attempts",
                    handle.unit_id,
                    handle.host,
                    handle.port,
                    attempts,
                )
                return

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise StartupTimeout(
                    f"Dev server not ready after {timeout:g}s",
                    timeout_seconds=timeout,
                )
            await self._pause(handle, min(self.interval, remaining))

    async def _pause(self, handle: SandboxHandle, delay: float) -> None:
        hint = handle.ready_hint
        if hint is None or hint.is_set():
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(hint.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        logger.debug("%s printed ready marker, probing now", handle.unit_id)
