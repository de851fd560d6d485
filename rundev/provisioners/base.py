from __future__ import annotations

from rundev.models import SandboxHandle, SandboxSpec


class SandboxProvisioner:
    """
    Creates and destroys one isolated execution unit per session.

    Implementations must make ``destroy`` safe to call on a handle that was
    already destroyed or never fully created, and must log (not raise) any
    error it hits.
    """

    name = "base"
    # Whether sandboxes listen on a port allocated from the local range
    needs_local_port = True
    # Default readiness deadline in seconds
    startup_timeout = 15.0

    async def create(self, spec: SandboxSpec) -> SandboxHandle:
        """
        Raises:
            ProvisionFailed: If the unit could not be created. Anything the
                backend created before failing is cleaned up first.
        """
        raise NotImplementedError

    async def destroy(self, handle: SandboxHandle) -> None:
        raise NotImplementedError

    async def inspect_running(self, handle: SandboxHandle) -> bool:
        """Whether the unit is still alive right after creation."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release backend-wide resources (HTTP clients, etc.)."""
        return None
