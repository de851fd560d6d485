"""
Core data model: sessions, artifact bundles and provisioner handles.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class SessionState(str, Enum):
    """Lifecycle state of a session.

    Provisioning -> Running -> Stopping -> Destroyed. A session in
    ``DESTROYED`` is no longer held by the registry.
    """

    PROVISIONING = "provisioning"
    RUNNING = "running"
    STOPPING = "stopping"
    DESTROYED = "destroyed"


def new_session_id() -> str:
    """Short opaque session identifier."""
    return uuid.uuid4().hex[:8]


@dataclass
class StartRequest:
    """Caller input for a new dev session, as received over HTTP."""

    app_id: Optional[str] = None
    merchant_name: Optional[str] = None
    cli_api_key: Optional[str] = None
    code_jsx: Optional[str] = None
    manifest_json: Union[str, Dict[str, Any], None] = None
    block_name: Optional[str] = None
    configuration_id: Optional[Union[int, str]] = None

    def missing_fields(self) -> list[str]:
        """Wire names of required fields that are absent or empty."""
        required = {
            "appId": self.app_id,
            "merchantName": self.merchant_name,
            "tapcartCliApiKey": self.cli_api_key,
            "codeJsx": self.code_jsx,
            "appStudioBlockName": self.block_name,
        }
        return [name for name, value in required.items() if not value]


@dataclass(frozen=True)
class SandboxSpec:
    """Artifact bundle handed to a provisioner."""

    session_id: str
    app_id: str
    block_name: str
    code_jsx: str
    cli_api_key: str
    manifest_json: Optional[str] = None
    merchant_name: Optional[str] = None
    # Local port reserved by the allocator; None for remote backends
    port: Optional[int] = None


@dataclass
class SandboxHandle:
    """
    Everything needed to address and later destroy one execution unit.

    ``unit_id`` is the container id, the Fly app name, or the child pid.
    ``host``/``port`` is where the dev server listens from this process's
    point of view; ``public_url`` is set by backends that expose their own
    routable hostname.
    """

    backend: str
    unit_id: str
    host: str
    port: int
    public_url: Optional[str] = None
    # "connect" (raw TCP) or "http" (GET answered below 500)
    readiness: str = "connect"
    # Set when the sandbox prints its "server started" marker
    ready_hint: Optional[asyncio.Event] = None
    # Local child process, for the process backend
    process: Optional[asyncio.subprocess.Process] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def base_url(self) -> str:
        scheme = "https" if self.port == 443 else "http"
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def exit_code(self) -> Optional[int]:
        """Exit status if a local process has already exited."""
        if self.process is None:
            return None
        return self.process.returncode


@dataclass
class Session:
    """One caller-facing dev session and its bookkeeping."""

    session_id: str
    created_at: float
    block_name: str
    configuration_id: Optional[Union[int, str]]
    handle: SandboxHandle
    url: str
    # Allocated local port, None when the backend needs none
    resource: Optional[int] = None
    state: SessionState = SessionState.PROVISIONING

    @property
    def endpoint(self) -> str:
        return self.handle.unit_id

    def age(self, now: float) -> float:
        return now - self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "state": self.state.value,
            "blockName": self.block_name,
            "configurationId": self.configuration_id,
            "endpoint": self.endpoint,
            "port": self.resource,
            "url": self.url,
            "createdAt": int(self.created_at * 1000),
        }
