"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in sys.path for proper imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from rundev.server.config import reset_settings  # noqa: E402

TEST_API_KEY = "test-secret"


@pytest.fixture(autouse=True)
def server_env(monkeypatch):
    """Known environment for every test; settings re-read per test."""
    monkeypatch.setenv("SERVICE_API_KEY", TEST_API_KEY)
    monkeypatch.setenv("RUNDEV_PUBLIC_URL", "http://testserver")
    for name in (
        "PORT",
        "RUNDEV_PORT_RANGE_START",
        "RUNDEV_PORT_RANGE_END",
        "RUNDEV_STARTUP_TIMEOUT_SECONDS",
        "RUNDEV_BACKEND",
        "RUNDEV_ROUTER_ENABLED",
        "RUNDEV_ROUTE_PREFIX",
        "RUNDEV_PROXY_ROOT_PATHS",
        "RUNDEV_AFFINITY_COOKIE",
        "RUNDEV_SESSION_TIMEOUT_SECONDS",
        "RUNDEV_LOGFIRE",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()
