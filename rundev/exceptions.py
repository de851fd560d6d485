"""
Typed exceptions for rundev.

Provides structured error handling with:
- RundevError: Base exception for all rundev errors
- InvalidRequest: Client input rejected before any resource is touched
- CapacityExceeded: Resource pool exhausted
- ProvisionFailed: Backend could not create the execution unit
- StartupTimeout: Execution unit created but never became ready (or exited)
- SessionNotFound: Operation on an unknown session id
- RouteNotFound: Router could not map a request to a live session
- BackendUnavailable: Proxy could not reach a session's endpoint
- ServiceShuttingDown: New work refused while live sessions are torn down

Every exception carries a machine-readable ``code`` and a human-readable
``message``; the HTTP layer maps them to status codes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class RundevError(Exception):
    """Base exception for all rundev errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    default_code: str = "rundev_error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidRequest(RundevError):
    """Client input failed validation. No side effects happened.

    Attributes:
        missing: Names of required fields that were absent or empty
    """

    default_code = "invalid_request"

    def __init__(
        self,
        message: str,
        *,
        missing: Optional[List[str]] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if missing:
            details["missing"] = list(missing)
        self.missing = list(missing or [])
        super().__init__(message, code=code, details=details)


class CapacityExceeded(RundevError):
    """Every candidate resource in the configured range is in use.

    Not retried automatically; callers surface it as a capacity limit.
    """

    default_code = "capacity_exceeded"


class ProvisionFailed(RundevError):
    """The provisioner could not create the execution unit.

    Attributes:
        backend: Name of the provisioning backend that failed
    """

    default_code = "provision_failed"

    def __init__(
        self,
        message: str,
        *,
        backend: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if backend:
            details["backend"] = backend
        self.backend = backend
        super().__init__(message, code=code, details=details)


class StartupTimeout(RundevError):
    """The dev server never accepted connections before the deadline.

    A sandbox that started and then exited is reported the same way.

    Attributes:
        timeout_seconds: The deadline that elapsed, when known
        exit_code: Exit status of the sandbox, when it exited
    """

    default_code = "startup_timeout"

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: Optional[float] = None,
        exit_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        if exit_code is not None:
            details["exit_code"] = exit_code
        self.timeout_seconds = timeout_seconds
        self.exit_code = exit_code
        super().__init__(message, code=code, details=details)


class SessionNotFound(RundevError):
    """No live session with the given id."""

    default_code = "session_not_found"


class RouteNotFound(RundevError):
    """The router found no live session for an inbound request."""

    default_code = "route_not_found"


class BackendUnavailable(RundevError):
    """The proxy could not reach a session's endpoint."""

    default_code = "backend_unavailable"


class ServiceShuttingDown(RundevError):
    """The manager is tearing down sessions and accepts no new work."""

    default_code = "shutting_down"


__all__ = [
    "RundevError",
    "InvalidRequest",
    "CapacityExceeded",
    "ProvisionFailed",
    "StartupTimeout",
    "SessionNotFound",
    "RouteNotFound",
    "BackendUnavailable",
    "ServiceShuttingDown",
]
