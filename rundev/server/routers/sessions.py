"""
Session management endpoints.

POST /start-dev - Provision a sandbox and start its dev server
DELETE /stop-dev/{session_id} - Tear a session down
GET /sessions - Snapshot of live sessions
"""
from fastapi import APIRouter, Depends

from rundev.lifecycle import LifecycleManager
from rundev.server.auth import get_api_key
from rundev.server.dependencies import get_manager
from rundev.server.schemas import (
    SessionInfo,
    SessionListResponse,
    StartDevRequest,
    StartDevResponse,
    StopDevResponse,
)


router = APIRouter(tags=["sessions"])


@router.post("/start-dev", response_model=StartDevResponse)
async def start_dev(
    request_body: StartDevRequest,
    api_key: str = Depends(get_api_key),
    manager: LifecycleManager = Depends(get_manager),
) -> StartDevResponse:
    """
    Start a dev session.

    Blocks until the sandbox's dev server accepts connections (or fails).

    Headers:
    - X-API-Key: Shared secret

    Returns the session id and its routable URL.
    """
    session = await manager.start(request_body.to_start_request())
    return StartDevResponse(
        session_id=session.session_id,
        url=session.url,
        port=session.resource,
    )


@router.delete("/stop-dev/{session_id}", response_model=StopDevResponse)
async def stop_dev(
    session_id: str,
    api_key: str = Depends(get_api_key),
    manager: LifecycleManager = Depends(get_manager),
) -> StopDevResponse:
    """
    Stop a dev session.

    Headers:
    - X-API-Key: Shared secret

    404 if the session is unknown or already stopped.
    """
    await manager.stop(session_id)
    return StopDevResponse()


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    api_key: str = Depends(get_api_key),
    manager: LifecycleManager = Depends(get_manager),
) -> SessionListResponse:
    """
    List live sessions.

    Headers:
    - X-API-Key: Shared secret
    """
    sessions = await manager.list_sessions()
    return SessionListResponse(
        sessions=[SessionInfo.from_session(s) for s in sessions]
    )
