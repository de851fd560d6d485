"""
Local child-process backend.

Each session gets a scratch workspace with the artifact bundle written to
disk and a dev server child process bound to a loopback port taken from
the allocator. The child runs in its own process group so teardown also
reaps anything it forks (bundlers, watchers).
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
import shutil
import signal
import tempfile
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Optional

from rundev.artifacts import write_workspace
from rundev.exceptions import ProvisionFailed
from rundev.models import SandboxHandle, SandboxSpec
from rundev.provisioners.base import SandboxProvisioner

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "tapcart block dev -b {block} -p {port}"
DEFAULT_READY_MARKER = "ready"
OUTPUT_TAIL_LINES = 200
# Longest output line kept whole; longer lines are dropped, not fatal
OUTPUT_LINE_LIMIT = 1024 * 1024


class LocalProcessProvisioner(SandboxProvisioner):
    """Runs each dev server as a local child process."""

    name = "process"
    needs_local_port = True

    def __init__(
        self,
        command: str = DEFAULT_COMMAND,
        ready_marker: Optional[str] = DEFAULT_READY_MARKER,
        workspace_root: Optional[str] = None,
        host: str = "127.0.0.1",
        startup_timeout: float = 15.0,
        kill_timeout: float = 5.0,
        extra_env: Optional[Dict[str, str]] = None,
    ) -> None:
        self._command = command
        self._ready_marker = ready_marker.lower() if ready_marker else None
        self._workspace_root = workspace_root
        self._host = host
        self._kill_timeout = kill_timeout
        self._extra_env = dict(extra_env or {})
        self.startup_timeout = startup_timeout

    def build_argv(self, spec: SandboxSpec) -> List[str]:
        # Split before substituting so block names with spaces stay one arg.
        return [
            part.format(block=spec.block_name, port=spec.port)
            for part in shlex.split(self._command)
        ]

    async def create(self, spec: SandboxSpec) -> SandboxHandle:
        if spec.port is None:
            raise ProvisionFailed("Process backend requires a local port", backend=self.name)

        root = Path(
            tempfile.mkdtemp(prefix=f"rundev-{spec.session_id}-", dir=self._workspace_root)
        )
        try:
            write_workspace(root, spec)
            env = {
                **os.environ,
                **self._extra_env,
                "TAPCART_API_KEY": spec.cli_api_key,
                "APP_ID": spec.app_id,
                "BLOCK_NAME": spec.block_name,
                "PORT": str(spec.port),
            }
            argv = self.build_argv(spec)
            logger.info("[%s] spawning %s in %s", spec.session_id, argv[0], root)
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(root),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
                limit=OUTPUT_LINE_LIMIT,
            )
        except OSError as e:
            shutil.rmtree(root, ignore_errors=True)
            raise ProvisionFailed(f"Failed to spawn dev server: {e}", backend=self.name) from e
        except BaseException:
            shutil.rmtree(root, ignore_errors=True)
            raise

        hint = asyncio.Event()
        output: Deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        reader = asyncio.create_task(
            self._pump_output(spec.session_id, process, output, hint)
        )
        return SandboxHandle(
            backend=self.name,
            unit_id=str(process.pid),
            host=self._host,
            port=spec.port,
            ready_hint=hint,
            process=process,
            extra={"workspace": str(root), "reader": reader, "output": output},
        )

    async def _pump_output(
        self,
        session_id: str,
        process: asyncio.subprocess.Process,
        output: Deque[str],
        hint: asyncio.Event,
    ) -> None:
        assert process.stdout is not None
        while True:
            try:
                raw = await process.stdout.readline()
            except ValueError:
                # readline already discarded the oversized chunk; keep draining
                # so the child never blocks on a full pipe.
                output.append("[output line too long, dropped]")
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip()
            output.append(line)
            logger.debug("[%s] %s", session_id, line)
            if self._ready_marker and not hint.is_set() and self._ready_marker in line.lower():
                hint.set()

    async def inspect_running(self, handle: SandboxHandle) -> bool:
        return handle.process is not None and handle.process.returncode is None

    async def destroy(self, handle: SandboxHandle) -> None:
        try:
            await self._terminate(handle)
        except Exception:
            logger.exception("Failed to stop dev server process %s", handle.unit_id)

        reader = handle.extra.get("reader")
        if reader is not None and not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

        workspace = handle.extra.get("workspace")
        if workspace:
            shutil.rmtree(workspace, ignore_errors=True)

    async def _terminate(self, handle: SandboxHandle) -> None:
        process = handle.process
        if process is None or process.returncode is not None:
            return
        self._signal_group(process.pid, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=self._kill_timeout)
        except asyncio.TimeoutError:
            logger.warning("Process %s ignored SIGTERM, killing", process.pid)
            self._signal_group(process.pid, signal.SIGKILL)
            await process.wait()

    @staticmethod
    def _signal_group(pid: int, sig: int) -> None:
        try:
            os.killpg(pid, sig)
        except ProcessLookupError:
            pass

    @staticmethod
    def output_tail(handle: SandboxHandle) -> List[str]:
        """Last captured lines of sandbox output, oldest first."""
        return list(handle.extra.get("output", ()))
