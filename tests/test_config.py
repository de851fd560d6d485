"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest

from rundev.server.config import Settings, get_settings, reset_settings


def test_defaults() -> None:
    settings = Settings()

    assert settings.port == 3002
    assert settings.backend == "process"
    assert settings.session_timeout_seconds == 1800
    assert settings.startup_timeout_seconds == 15
    assert (settings.port_range_start, settings.port_range_end) == (5100, 5199)
    assert settings.router_enabled
    assert settings.route_prefix == "/dev"
    assert "/@vite" in settings.proxy_root_paths
    assert not settings.force_secure_subresources


def test_fly_defaults(monkeypatch) -> None:
    monkeypatch.setenv("RUNDEV_BACKEND", "fly")

    settings = Settings()

    assert settings.startup_timeout_seconds == 60
    assert not settings.router_enabled


def test_unknown_backend(monkeypatch) -> None:
    monkeypatch.setenv("RUNDEV_BACKEND", "lambda")

    with pytest.raises(ValueError, match="RUNDEV_BACKEND"):
        Settings()


def test_root_paths_normalized(monkeypatch) -> None:
    monkeypatch.setenv("RUNDEV_PROXY_ROOT_PATHS", "api/, /assets , ,/_next/")
    monkeypatch.setenv("RUNDEV_ROUTE_PREFIX", "/sessions/")

    settings = Settings()

    assert settings.proxy_root_paths == ["/api", "/assets", "/_next"]
    assert settings.route_prefix == "/sessions"


def test_https_public_url(monkeypatch) -> None:
    monkeypatch.setenv("RUNDEV_PUBLIC_URL", "https://dev.example.com/")

    settings = Settings()

    assert settings.public_url == "https://dev.example.com"
    assert settings.force_secure_subresources


def test_settings_cached_until_reset(monkeypatch) -> None:
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("PORT", "4000")
    reset_settings()

    assert get_settings().port == 4000
