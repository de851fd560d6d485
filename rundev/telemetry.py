"""Logfire integration for tracing sandbox lifecycle operations."""
from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import logfire

_configured = False


def _env_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def enabled() -> bool:
    return _env_truthy(os.getenv("RUNDEV_LOGFIRE"))


def configure() -> bool:
    global _configured
    if not enabled():
        return False
    if not _configured:
        # Console output stays with the stdlib logging handlers.
        logfire.configure(
            service_name="rundev",
            console=False,
            send_to_logfire="if-token-present",
        )
        _configured = True
    return True


@contextmanager
def span(name: str, **attrs: Any) -> Iterator[None]:
    if not configure():
        yield
        return
    with logfire.span(name, **attrs):
        yield


def reset() -> None:
    """Forget configuration state. For testing only."""
    global _configured
    _configured = False
