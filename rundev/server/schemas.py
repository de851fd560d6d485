"""
Pydantic models for API request/response schemas.

Wire names are camelCase; Python attributes are snake_case.
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from rundev.models import Session, StartRequest


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Session Endpoint Schemas
# =============================================================================


class StartDevRequest(_Wire):
    """Request body for POST /start-dev.

    Every field is optional at the schema level; required fields are
    checked by the lifecycle manager so missing ones yield a 400 listing
    them.
    """

    app_id: Optional[str] = Field(None, alias="appId", description="Artifact (app) name")
    merchant_name: Optional[str] = Field(None, alias="merchantName", description="Caller/org name")
    cli_api_key: Optional[str] = Field(
        None, alias="tapcartCliApiKey", description="Credential for the in-sandbox dev tool"
    )
    code_jsx: Optional[str] = Field(None, alias="codeJsx", description="Block source code")
    manifest_json: Optional[Union[str, Dict[str, Any]]] = Field(
        None, alias="manifestJson", description="Optional block manifest"
    )
    block_name: Optional[str] = Field(
        None, alias="appStudioBlockName", description="Logical block name"
    )
    configuration_id: Optional[Union[int, str]] = Field(
        None, alias="configurationId", description="Opaque caller metadata"
    )

    def to_start_request(self) -> StartRequest:
        return StartRequest(
            app_id=self.app_id,
            merchant_name=self.merchant_name,
            cli_api_key=self.cli_api_key,
            code_jsx=self.code_jsx,
            manifest_json=self.manifest_json,
            block_name=self.block_name,
            configuration_id=self.configuration_id,
        )


class StartDevResponse(_Wire):
    """Response body for POST /start-dev."""

    success: bool = True
    session_id: str = Field(..., alias="sessionId", description="Session identifier")
    url: str = Field(..., description="Routable URL of the dev server")
    port: Optional[int] = Field(None, description="Local port, for local backends")
    message: str = "Dev server started"


class StopDevResponse(_Wire):
    """Response body for DELETE /stop-dev/{sessionId}."""

    success: bool = True
    message: str = "Session stopped"


class SessionInfo(_Wire):
    """One entry of GET /sessions."""

    session_id: str = Field(..., alias="sessionId")
    state: str
    block_name: str = Field(..., alias="blockName")
    configuration_id: Optional[Union[int, str]] = Field(None, alias="configurationId")
    endpoint: str = Field(..., description="Container id, Fly app name or process id")
    port: Optional[int] = None
    url: str
    created_at: int = Field(..., alias="createdAt", description="Epoch milliseconds")

    @classmethod
    def from_session(cls, session: Session) -> "SessionInfo":
        return cls.model_validate(session.to_dict())


class SessionListResponse(_Wire):
    """Response body for GET /sessions."""

    sessions: List[SessionInfo]


# =============================================================================
# Health Endpoint Schemas
# =============================================================================


class HealthResponse(_Wire):
    """Response body for GET /health."""

    status: str = Field(..., description="Health status")
    active_sessions: int = Field(..., alias="activeSessions")
    timestamp: str = Field(..., description="ISO timestamp")


# =============================================================================
# Error Schemas
# =============================================================================


class ErrorDetail(BaseModel):
    """Error detail."""

    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    request_id: Optional[str] = Field(None, description="Request ID for tracing")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorDetail
