"""
Container runtime detection and abstraction.

Handles detection of available container runtimes (Podman vs Docker)
and provides unified command interface.
"""

from __future__ import annotations

import shutil
import subprocess
import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ContainerRuntime(Enum):
    PODMAN = "podman"
    DOCKER = "docker"


def _check_works(command: str) -> bool:
    """Verify the runtime CLI can reach its daemon/service."""
    try:
        subprocess.run([command, "info"], capture_output=True, check=True, timeout=5)
        return True
    except (subprocess.SubprocessError, OSError):
        return False


def detect_runtime(preferred: Optional[str] = None) -> ContainerRuntime:
    """
    Detect available container runtime.

    Priority:
    1. ``preferred`` if given (must be installed and working)
    2. Docker
    3. Podman

    Raises:
        RuntimeError: If no supported runtime is found/working.
    """
    if preferred:
        runtime = ContainerRuntime(preferred)
        if shutil.which(runtime.value) and _check_works(runtime.value):
            logger.info("Using container runtime: %s", runtime.value)
            return runtime
        raise RuntimeError(f"Container runtime {preferred!r} is not available")

    for runtime in (ContainerRuntime.DOCKER, ContainerRuntime.PODMAN):
        if shutil.which(runtime.value) and _check_works(runtime.value):
            logger.info("Detected container runtime: %s", runtime.value)
            return runtime

    raise RuntimeError(
        "No container runtime available. Please install Docker or Podman."
    )


def get_runtime_command(runtime: ContainerRuntime) -> str:
    """Return the CLI command for the runtime."""
    return runtime.value
