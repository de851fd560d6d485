"""
Remote Fly.io Machines backend.

Each session gets its own Fly app with a single machine running the
session image. Machine creation is asynchronous at the provider, so
create() polls until the machine reports ``started``. The sandbox is
addressed through the app's public hostname; no local port is used.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from rundev.artifacts import sandbox_env
from rundev.exceptions import ProvisionFailed
from rundev.models import SandboxHandle, SandboxSpec
from rundev.provisioners.base import SandboxProvisioner

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.machines.dev/v1"


class FlyAPIError(Exception):
    """Non-2xx response from the Machines API."""

    def __init__(self, status_code: int, body: Any) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Fly API error ({status_code}): {body}")


class FlyMachinesProvisioner(SandboxProvisioner):
    """Runs each dev server on a dedicated Fly machine."""

    name = "fly"
    needs_local_port = False

    def __init__(
        self,
        api_token: Optional[str],
        image: str,
        org_slug: str = "personal",
        region: str = "sjc",
        api_url: str = DEFAULT_API_URL,
        app_prefix: str = "tapcart-dev",
        internal_port: int = 5000,
        machine_timeout: float = 60.0,
        poll_interval: float = 2.0,
        settle_seconds: float = 3.0,
        startup_timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_token = api_token
        self._image = image
        self._org_slug = org_slug
        self._region = region
        self._app_prefix = app_prefix
        self._internal_port = internal_port
        self._machine_timeout = machine_timeout
        self._poll_interval = poll_interval
        self._settle_seconds = settle_seconds
        self.startup_timeout = startup_timeout
        self._client = client or httpx.AsyncClient(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
            timeout=30.0,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._client.request(method, path, **kwargs)
        try:
            data = response.json() if response.content else None
        except ValueError:
            data = response.text
        if response.is_error:
            raise FlyAPIError(response.status_code, data)
        return data

    def app_name(self, session_id: str) -> str:
        return f"{self._app_prefix}-{session_id}"

    def machine_config(self, spec: SandboxSpec) -> Dict[str, Any]:
        return {
            "name": f"dev-{spec.session_id}",
            "region": self._region,
            "config": {
                "image": self._image,
                "env": sandbox_env(spec),
                "services": [
                    {
                        "protocol": "tcp",
                        "internal_port": self._internal_port,
                        "ports": [
                            {"port": 80, "handlers": ["http"]},
                            {"port": 443, "handlers": ["tls", "http"]},
                        ],
                    }
                ],
                "guest": {"cpu_kind": "shared", "cpus": 1, "memory_mb": 512},
                "auto_destroy": True,
            },
        }

    async def create(self, spec: SandboxSpec) -> SandboxHandle:
        if not self._api_token:
            raise ProvisionFailed("Fly API token not configured", backend=self.name)

        app_name = self.app_name(spec.session_id)
        try:
            logger.info("[FLY] Creating app: %s", app_name)
            await self._request(
                "POST", "/apps", json={"app_name": app_name, "org_slug": self._org_slug}
            )
            logger.info("[FLY] Creating machine in app: %s", app_name)
            machine = await self._request(
                "POST", f"/apps/{app_name}/machines", json=self.machine_config(spec)
            )
            machine_id = machine["id"]
            await self.wait_for_machine(app_name, machine_id)
        except (FlyAPIError, httpx.HTTPError, KeyError, TypeError) as e:
            await self._delete_app(app_name)
            raise ProvisionFailed(str(e), backend=self.name) from e
        except BaseException:
            await self._delete_app(app_name)
            raise

        logger.info("[FLY] Machine %s is ready", machine_id)
        if self._settle_seconds:
            await asyncio.sleep(self._settle_seconds)

        hostname = f"{app_name}.fly.dev"
        return SandboxHandle(
            backend=self.name,
            unit_id=app_name,
            host=hostname,
            port=443,
            public_url=f"https://{hostname}",
            readiness="http",
            extra={"machine_id": machine_id},
        )

    async def wait_for_machine(self, app_name: str, machine_id: str) -> Dict[str, Any]:
        """
        Poll until the machine is ``started``.

        Raises:
            ProvisionFailed: If the machine fails, is destroyed, or does not
                start within the machine timeout.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._machine_timeout
        while loop.time() < deadline:
            try:
                machine = await self._request(
                    "GET", f"/apps/{app_name}/machines/{machine_id}"
                )
            except FlyAPIError as e:
                # Freshly created machines can 404 for a moment.
                if e.status_code != 404:
                    raise
            else:
                state = machine.get("state")
                logger.info("[FLY] Machine %s state: %s", machine_id, state)
                if state == "started":
                    return machine
                if state in ("failed", "destroyed"):
                    raise ProvisionFailed(
                        f"Machine failed with state: {state}", backend=self.name
                    )
            await asyncio.sleep(self._poll_interval)
        raise ProvisionFailed("Timeout waiting for machine to start", backend=self.name)

    async def inspect_running(self, handle: SandboxHandle) -> bool:
        machine_id = handle.extra.get("machine_id")
        try:
            machine = await self._request(
                "GET", f"/apps/{handle.unit_id}/machines/{machine_id}"
            )
        except (FlyAPIError, httpx.HTTPError) as e:
            logger.warning("[FLY] Failed to inspect %s: %s", handle.unit_id, e)
            return False
        return machine.get("state") == "started"

    async def destroy(self, handle: SandboxHandle) -> None:
        await self._delete_app(handle.unit_id)

    async def _delete_app(self, app_name: str) -> None:
        logger.info("[FLY] Deleting app: %s", app_name)
        try:
            await self._request("DELETE", f"/apps/{app_name}", params={"force": "true"})
        except FlyAPIError as e:
            if e.status_code != 404:
                logger.error("[FLY] Error deleting app %s: %s", app_name, e)
        except httpx.HTTPError as e:
            logger.error("[FLY] Error deleting app %s: %s", app_name, e)

    async def aclose(self) -> None:
        await self._client.aclose()
