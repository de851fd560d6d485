"""
FastAPI application factory.

Usage:
    from rundev.server.app import create_app

    app = create_app()

Or run directly:
    uvicorn rundev.server:app
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rundev import telemetry
from rundev.exceptions import RundevError
from rundev.lifecycle import LifecycleManager
from rundev.server.config import Settings, get_settings
from rundev.server.dependencies import build_manager
from rundev.server.exceptions import APIError, ValidationError, api_error_from
from rundev.server.middleware import RequestTrackingMiddleware, get_request_id
from rundev.server.routers import health, sessions
from rundev.server.routers.proxy import build_proxy_router
from rundev.server.schemas import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def _proxy_client() -> httpx.AsyncClient:
    # No read timeout: dev servers hold long-poll and streaming responses open
    return httpx.AsyncClient(
        timeout=httpx.Timeout(30.0, read=None),
        follow_redirects=False,
    )


def _error_response(request: Request, exc: APIError) -> JSONResponse:
    request_id = (
        exc.request_id
        or get_request_id()
        or getattr(request.state, "request_id", None)
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                request_id=request_id,
            )
        ).model_dump(),
        headers={"X-Request-ID": request_id or "unknown"},
    )


def create_app(
    settings: Optional[Settings] = None,
    manager: Optional[LifecycleManager] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Configuration; defaults to the environment.
        manager: Pre-built lifecycle manager. Built from ``settings`` at
            startup when omitted.
        http_client: Client used by the proxy for upstream requests.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        if telemetry.enabled():
            telemetry.configure()

        app.state.manager = manager or build_manager(settings)
        app.state.http_client = http_client or _proxy_client()
        await app.state.manager.init()
        logger.info(
            "rundev ready: backend=%s router=%s public_url=%s",
            settings.backend,
            "on" if settings.router_enabled else "off",
            settings.public_url,
        )

        yield

        logger.info("Shutting down, destroying %d session(s)", len(app.state.manager.registry))
        await app.state.manager.shutdown()
        if http_client is None:
            await app.state.http_client.aclose()

    app = FastAPI(
        title="rundev",
        description="Lifecycle manager and reverse proxy for ephemeral dev sandboxes",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Add middleware
    app.add_middleware(RequestTrackingMiddleware)

    # Exception handlers
    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        """Handle HTTP-layer API errors."""
        return _error_response(request, exc)

    @app.exception_handler(RundevError)
    async def rundev_error_handler(request: Request, exc: RundevError) -> JSONResponse:
        """Translate core errors to their HTTP status."""
        return _error_response(request, api_error_from(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed bodies answer 400, not 422."""
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return _error_response(request, ValidationError(message))

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected errors."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(
            request, APIError("An internal error occurred", code="internal_error")
        )

    # Include routers
    app.include_router(health.router)
    app.include_router(sessions.router)
    if settings.router_enabled:
        app.include_router(build_proxy_router(settings))

    return app


# Default app instance for uvicorn
app = create_app()
