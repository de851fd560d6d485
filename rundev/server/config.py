"""
Server configuration from environment variables.

Usage:
    from rundev.server.config import get_settings

    settings = get_settings()
    print(settings.host, settings.port)

A ``.env`` file in the working directory is loaded first; variables
already present in the environment win.
"""

from functools import lru_cache
from typing import List, Optional
import os

from dotenv import load_dotenv

BACKENDS = ("process", "container", "fly")

DEFAULT_PROXY_ROOT_PATHS = "/api,/socket.io,/@vite,/@react-refresh,/node_modules,/src"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    items = []
    for item in raw.split(","):
        item = item.strip().rstrip("/")
        if not item:
            continue
        items.append(item if item.startswith("/") else f"/{item}")
    return items


class Settings:
    """Server configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Server
        self.host: str = os.getenv("RUNDEV_HOST", "0.0.0.0")
        self.port: int = int(os.getenv("PORT", "3002"))
        self.public_url: str = os.getenv(
            "RUNDEV_PUBLIC_URL", f"http://localhost:{self.port}"
        ).rstrip("/")
        self.log_level: str = os.getenv("RUNDEV_LOG_LEVEL", "INFO")

        # Authentication
        self.api_key: Optional[str] = os.getenv("SERVICE_API_KEY") or None

        # Backend selection
        self.backend: str = os.getenv("RUNDEV_BACKEND", "process").strip().lower()
        if self.backend not in BACKENDS:
            raise ValueError(
                f"RUNDEV_BACKEND must be one of {', '.join(BACKENDS)}, got {self.backend!r}"
            )

        # Session lifecycle
        self.session_timeout_seconds: float = float(
            os.getenv("RUNDEV_SESSION_TIMEOUT_SECONDS", "1800")
        )
        self.sweep_interval_seconds: float = float(
            os.getenv("RUNDEV_SWEEP_INTERVAL_SECONDS", "60")
        )
        default_startup = "60" if self.backend == "fly" else "15"
        self.startup_timeout_seconds: float = float(
            os.getenv("RUNDEV_STARTUP_TIMEOUT_SECONDS", default_startup)
        )
        self.probe_interval_seconds: float = float(
            os.getenv("RUNDEV_PROBE_INTERVAL_SECONDS", "0.5")
        )

        # Port window for local backends (inclusive)
        self.port_range_start: int = int(os.getenv("RUNDEV_PORT_RANGE_START", "5100"))
        self.port_range_end: int = int(os.getenv("RUNDEV_PORT_RANGE_END", "5199"))
        self.check_port_bind: bool = _env_bool("RUNDEV_CHECK_PORT_BIND", True)

        # Process backend
        self.dev_command: str = os.getenv(
            "RUNDEV_DEV_COMMAND", "tapcart block dev -b {block} -p {port}"
        )
        self.ready_marker: Optional[str] = os.getenv("RUNDEV_READY_MARKER", "ready") or None
        self.workspace_root: Optional[str] = os.getenv("RUNDEV_WORKSPACE_ROOT") or None

        # Container and Fly backends
        self.session_image: str = os.getenv(
            "SESSION_IMAGE", "registry.fly.io/tapcart-dev-session:latest"
        )
        self.container_runtime: Optional[str] = os.getenv("RUNDEV_CONTAINER_RUNTIME") or None
        self.container_port: int = int(os.getenv("RUNDEV_CONTAINER_PORT", "5000"))
        self.fly_api_url: str = os.getenv("FLY_API_URL", "https://api.machines.dev/v1")
        self.fly_api_token: Optional[str] = os.getenv("FLY_API_TOKEN") or None
        self.fly_org_slug: str = os.getenv("FLY_ORG_SLUG", "personal")
        self.fly_region: str = os.getenv("FLY_REGION", "sjc")
        self.fly_settle_seconds: float = float(os.getenv("RUNDEV_FLY_SETTLE_SECONDS", "3"))

        # Request router
        self.router_enabled: bool = _env_bool(
            "RUNDEV_ROUTER_ENABLED", self.backend != "fly"
        )
        self.route_prefix: str = "/" + os.getenv("RUNDEV_ROUTE_PREFIX", "/dev").strip("/")
        self.proxy_root_paths: List[str] = _env_list(
            "RUNDEV_PROXY_ROOT_PATHS", DEFAULT_PROXY_ROOT_PATHS
        )
        self.affinity_cookie: str = os.getenv("RUNDEV_AFFINITY_COOKIE", "rundev_session")

    @property
    def force_secure_subresources(self) -> bool:
        """Proxied pages ask browsers to upgrade http sub-resources."""
        return self.public_url.startswith("https://")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    load_dotenv()
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()
