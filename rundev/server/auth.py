"""
Shared-secret authentication.

Uses constant-time comparison to prevent timing attacks. With no secret
configured every authenticated endpoint rejects the request.
"""

import hmac
from typing import Optional

from fastapi import Header, Request

from rundev.server.config import Settings, get_settings
from rundev.server.exceptions import AuthenticationError


def verify_api_key(api_key: str, expected: Optional[str]) -> bool:
    """
    Verify an API key against the configured shared secret.

    Returns:
        True if valid, False otherwise (including when no secret is set).
    """
    if expected is None:
        return False

    return hmac.compare_digest(api_key.encode(), expected.encode())


def app_settings(request: Request) -> Settings:
    """Settings the serving app was built with."""
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def get_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> str:
    """
    FastAPI dependency to extract and validate the shared secret.

    Raises:
        AuthenticationError: If the key is missing or invalid.

    Returns:
        The validated API key.
    """
    expected = app_settings(request).api_key
    if not x_api_key or not verify_api_key(x_api_key, expected):
        raise AuthenticationError("Unauthorized")

    return x_api_key
