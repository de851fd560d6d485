"""Tests for the Logfire tracing switch."""

from __future__ import annotations

from contextlib import contextmanager

import logfire

from rundev import telemetry


def test_span_is_noop_when_disabled(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(logfire, "configure", lambda **kw: calls.append(kw))
    telemetry.reset()

    with telemetry.span("rundev.provision", session_id="abc"):
        pass

    assert not telemetry.enabled()
    assert calls == []


def test_span_configures_once_when_enabled(monkeypatch) -> None:
    configured = []
    spans = []

    @contextmanager
    def fake_span(name, **attrs):
        spans.append((name, attrs))
        yield

    monkeypatch.setenv("RUNDEV_LOGFIRE", "1")
    monkeypatch.setattr(logfire, "configure", lambda **kw: configured.append(kw))
    monkeypatch.setattr(logfire, "span", fake_span)
    telemetry.reset()
    try:
        with telemetry.span("rundev.provision", session_id="abc"):
            pass
        with telemetry.span("rundev.teardown", session_id="abc", reason="stopped"):
            pass
    finally:
        telemetry.reset()

    assert len(configured) == 1
    assert configured[0]["service_name"] == "rundev"
    assert spans == [
        ("rundev.provision", {"session_id": "abc"}),
        ("rundev.teardown", {"session_id": "abc", "reason": "stopped"}),
    ]
