"""
Health check endpoint.

Provides basic health status for load balancers and monitoring.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from rundev.lifecycle import LifecycleManager
from rundev.server.dependencies import get_manager
from rundev.server.schemas import HealthResponse


router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    manager: LifecycleManager = Depends(get_manager),
) -> HealthResponse:
    """
    Health check endpoint.

    Always 200; reports the number of live sessions.
    Does not require authentication.
    """
    return HealthResponse(
        status="ok",
        active_sessions=len(manager.registry),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
