"""
Request tracking middleware.

Provides:
- Request ID generation and propagation
- Access logging with timing
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Context variable for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_var.get()


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return f"req-{uuid.uuid4().hex[:16]}"


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request tracking.

    Extracts the request ID from headers, generates one if missing, and
    logs each request's outcome. Health checks are not logged.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        token = request_id_var.set(request_id)
        request.state.request_id = request_id

        quiet = request.url.path.startswith("/health")
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_ms = (time.time() - start_time) * 1000
            logger.error(
                "%s %s failed after %.1fms: %s [%s]",
                request.method,
                request.url.path,
                elapsed_ms,
                type(e).__name__,
                request_id,
            )
            raise
        finally:
            request_id_var.reset(token)

        if not quiet:
            elapsed_ms = (time.time() - start_time) * 1000
            level = logging.INFO if response.status_code < 500 else logging.WARNING
            logger.log(
                level,
                "%s %s -> %d (%.1fms) [%s]",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
                request_id,
            )

        response.headers["X-Request-ID"] = request_id
        return response
