"""
HTTP exception types for the API server.

Core rundev errors are translated with ``api_error_from``; the status
code is chosen by error class.
"""

from typing import Dict, Optional, Type

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


class APIError(Exception):
    """Base exception for API errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message
        self.request_id = request_id
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class AuthenticationError(APIError):
    """Invalid or missing shared secret."""

    status_code = 401
    code = "unauthorized"


class ValidationError(APIError):
    """Request validation failed."""

    status_code = 400
    code = "invalid_request"


STATUS_BY_ERROR: Dict[Type[RundevError], int] = {
    InvalidRequest: 400,
    SessionNotFound: 404,
    RouteNotFound: 404,
    CapacityExceeded: 503,
    ServiceShuttingDown: 503,
    ProvisionFailed: 500,
    StartupTimeout: 500,
    BackendUnavailable: 502,
}


def status_for(exc: RundevError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


def api_error_from(exc: RundevError, request_id: Optional[str] = None) -> APIError:
    """Translate a core error into its HTTP form."""
    return APIError(
        exc.message,
        request_id=request_id,
        code=exc.code,
        status_code=status_for(exc),
    )
