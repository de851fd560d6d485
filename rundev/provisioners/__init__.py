"""
Sandbox provisioning backends.

    process    local child process on a loopback port
    container  Docker/Podman container with a published host port
    fly        Fly.io machine behind a public hostname

The backend is picked once at startup from configuration.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from rundev.provisioners.base import SandboxProvisioner
from rundev.provisioners.container import ContainerProvisioner
from rundev.provisioners.fly import FlyMachinesProvisioner
from rundev.provisioners.process import LocalProcessProvisioner
from rundev.provisioners.runtime import ContainerRuntime, detect_runtime

if TYPE_CHECKING:
    from rundev.server.config import Settings


def build_provisioner(settings: "Settings") -> SandboxProvisioner:
    """Instantiate the backend named by ``settings.backend``."""
    if settings.backend == "process":
        return LocalProcessProvisioner(
            command=settings.dev_command,
            ready_marker=settings.ready_marker,
            workspace_root=settings.workspace_root,
            startup_timeout=settings.startup_timeout_seconds,
        )
    if settings.backend == "container":
        return ContainerProvisioner(
            image=settings.session_image,
            runtime=detect_runtime(settings.container_runtime),
            container_port=settings.container_port,
            startup_timeout=settings.startup_timeout_seconds,
        )
    if settings.backend == "fly":
        return FlyMachinesProvisioner(
            api_token=settings.fly_api_token,
            image=settings.session_image,
            org_slug=settings.fly_org_slug,
            region=settings.fly_region,
            api_url=settings.fly_api_url,
            settle_seconds=settings.fly_settle_seconds,
            startup_timeout=settings.startup_timeout_seconds,
        )
    raise ValueError(f"Unknown backend: {settings.backend}")


__all__ = [
    "SandboxProvisioner",
    "LocalProcessProvisioner",
    "ContainerProvisioner",
    "FlyMachinesProvisioner",
    "ContainerRuntime",
    "build_provisioner",
]
