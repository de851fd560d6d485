"""
Local container backend (Docker or Podman CLI).

One detached container per session, running the session image whose
entrypoint unpacks the base64 artifact bundle from its environment and
starts the dev server on ``container_port``. The container port is
published on a loopback host port taken from the allocator.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Dict, List, Optional, Tuple

from rundev.artifacts import sandbox_env
from rundev.exceptions import ProvisionFailed
from rundev.models import SandboxHandle, SandboxSpec
from rundev.provisioners.base import SandboxProvisioner
from rundev.provisioners.runtime import ContainerRuntime, get_runtime_command

logger = logging.getLogger(__name__)


class ContainerProvisioner(SandboxProvisioner):
    """Runs each dev server in its own container."""

    name = "container"
    needs_local_port = True

    def __init__(
        self,
        image: str,
        runtime: ContainerRuntime,
        container_port: int = 5000,
        host: str = "127.0.0.1",
        memory_mb: int = 512,
        cpus: float = 1.0,
        startup_timeout: float = 15.0,
        command_timeout: float = 60.0,
    ) -> None:
        self._image = image
        self._cmd = get_runtime_command(runtime)
        self._container_port = container_port
        self._host = host
        self._memory_mb = memory_mb
        self._cpus = cpus
        self._command_timeout = command_timeout
        self.startup_timeout = startup_timeout

    async def _run(
        self, *args: str, env: Optional[Dict[str, str]] = None
    ) -> Tuple[int, str, str]:
        proc = await asyncio.create_subprocess_exec(
            self._cmd,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._command_timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise
        return proc.returncode or 0, stdout.decode().strip(), stderr.decode().strip()

    def build_run_args(self, spec: SandboxSpec) -> List[str]:
        args = [
            "run",
            "-d",
            "--name",
            f"rundev-{spec.session_id}",
            "--label",
            f"rundev.session={spec.session_id}",
            "-p",
            f"{self._host}:{spec.port}:{self._container_port}",
            "--memory",
            f"{self._memory_mb}m",
            "--cpus",
            str(self._cpus),
        ]
        # Values travel through the CLI's environment, not its argv.
        for key in sandbox_env(spec):
            args.extend(["-e", key])
        args.append(self._image)
        return args

    async def create(self, spec: SandboxSpec) -> SandboxHandle:
        if spec.port is None:
            raise ProvisionFailed("Container backend requires a host port", backend=self.name)

        name = f"rundev-{spec.session_id}"
        env = {**os.environ, **sandbox_env(spec)}
        logger.info("[%s] starting container %s from %s", spec.session_id, name, self._image)
        try:
            code, stdout, stderr = await self._run(*self.build_run_args(spec), env=env)
        except (OSError, asyncio.TimeoutError) as e:
            await self._remove(name)
            raise ProvisionFailed(f"Container start failed: {e}", backend=self.name) from e

        if code != 0:
            await self._remove(name)
            raise ProvisionFailed(
                f"Container start failed: {stderr or stdout}", backend=self.name
            )

        container_id = stdout.splitlines()[-1] if stdout else name
        return SandboxHandle(
            backend=self.name,
            unit_id=container_id,
            host=self._host,
            port=spec.port,
            # the published port accepts connections before the dev server is up
            readiness="http",
            extra={"name": name},
        )

    async def inspect_running(self, handle: SandboxHandle) -> bool:
        try:
            code, stdout, _ = await self._run(
                "inspect", "-f", "{{.State.Running}}", handle.unit_id
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning("Failed to inspect container %s: %s", handle.unit_id, e)
            return False
        return code == 0 and stdout == "true"

    async def destroy(self, handle: SandboxHandle) -> None:
        await self._remove(handle.unit_id)

    async def _remove(self, ref: str) -> None:
        try:
            code, _, stderr = await self._run("rm", "-f", ref)
        except (OSError, asyncio.TimeoutError) as e:
            logger.error("Failed to remove container %s: %s", ref, e)
            return
        if code != 0 and "no such container" not in stderr.lower():
            logger.error("Failed to remove container %s: %s", ref, stderr)
