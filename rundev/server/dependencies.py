"""
Construction and injection of the process-scoped LifecycleManager.

The manager lives on ``app.state``; handlers receive it through
``Depends(get_manager)`` rather than a module global.
"""
from __future__ import annotations

from fastapi import Request

from rundev.allocator import NullAllocator, PortAllocator
from rundev.lifecycle import LifecycleConfig, LifecycleManager
from rundev.provisioners import build_provisioner
from rundev.readiness import ReadinessProber
from rundev.server.config import Settings
from rundev.server.exceptions import APIError


def build_manager(settings: Settings) -> LifecycleManager:
    """Wire a LifecycleManager for the configured backend."""
    provisioner = build_provisioner(settings)
    if provisioner.needs_local_port:
        allocator = PortAllocator(
            settings.port_range_start,
            settings.port_range_end,
            check_bind=settings.check_port_bind,
        )
    else:
        allocator = NullAllocator()

    config = LifecycleConfig(
        session_timeout_seconds=settings.session_timeout_seconds,
        sweep_interval_seconds=settings.sweep_interval_seconds,
        startup_timeout_seconds=settings.startup_timeout_seconds,
        public_url=settings.public_url,
        route_prefix=settings.route_prefix if settings.router_enabled else None,
    )
    return LifecycleManager(
        provisioner,
        allocator,
        prober=ReadinessProber(interval=settings.probe_interval_seconds),
        config=config,
    )


def get_manager(request: Request) -> LifecycleManager:
    """FastAPI dependency returning the app's LifecycleManager."""
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise APIError("Service not initialized", code="not_initialized", status_code=503)
    return manager
