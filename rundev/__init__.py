"""
rundev - ephemeral dev sandboxes behind one public endpoint.

Each session owns one sandboxed dev server (a local process, a container,
or a Fly machine). The lifecycle manager provisions it, waits until it
answers, and tears it down on request or after the idle timeout. The
HTTP server exposes session management and proxies browser traffic to
the right sandbox.

    from rundev.lifecycle import LifecycleManager
    from rundev.server import create_app
"""

from rundev.exceptions import (
    BackendUnavailable,
    CapacityExceeded,
    InvalidRequest,
    ProvisionFailed,
    RouteNotFound,
    RundevError,
    ServiceShuttingDown,
    SessionNotFound,
    StartupTimeout,
)
from rundev.lifecycle import LifecycleConfig, LifecycleManager
from rundev.models import Session, SessionState, StartRequest

__version__ = "1.0.0"

__all__ = [
    "BackendUnavailable",
    "CapacityExceeded",
    "InvalidRequest",
    "LifecycleConfig",
    "LifecycleManager",
    "ProvisionFailed",
    "RouteNotFound",
    "RundevError",
    "ServiceShuttingDown",
    "Session",
    "SessionNotFound",
    "SessionState",
    "StartRequest",
    "StartupTimeout",
]
