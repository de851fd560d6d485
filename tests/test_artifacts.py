"""Tests for artifact bundle encoding and workspace layout."""

from __future__ import annotations

import base64
import json

import pytest

from rundev.artifacts import (
    normalize_manifest,
    sandbox_env,
    validate_block_name,
    write_workspace,
)
from rundev.exceptions import InvalidRequest
from rundev.models import SandboxSpec


def make_spec(**overrides) -> SandboxSpec:
    fields = dict(
        session_id="abc12345",
        app_id="app-1",
        block_name="hero",
        code_jsx="export default () => <div>hi</div>",
        cli_api_key="cli-key",
        manifest_json='{"name": "hero"}',
    )
    fields.update(overrides)
    return SandboxSpec(**fields)


def test_normalize_manifest() -> None:
    assert normalize_manifest(None) is None
    assert normalize_manifest("") is None
    assert normalize_manifest('{"a": 1}') == '{"a": 1}'
    assert json.loads(normalize_manifest({"a": 1})) == {"a": 1}


def test_sandbox_env_encodes_payloads() -> None:
    env = sandbox_env(make_spec())

    assert env["APP_ID"] == "app-1"
    assert env["BLOCK_NAME"] == "hero"
    assert env["TAPCART_API_KEY"] == "cli-key"
    assert base64.b64decode(env["CODE_JSX_B64"]).decode() == "export default () => <div>hi</div>"
    assert base64.b64decode(env["MANIFEST_JSON_B64"]).decode() == '{"name": "hero"}'


def test_sandbox_env_without_manifest() -> None:
    assert sandbox_env(make_spec(manifest_json=None))["MANIFEST_JSON_B64"] == ""


@pytest.mark.parametrize("name", ["", ".", "..", "a/b", "a\\b", "nul\x00"])
def test_unsafe_block_names(name) -> None:
    with pytest.raises(InvalidRequest):
        validate_block_name(name)


def test_write_workspace(tmp_path) -> None:
    target = write_workspace(tmp_path, make_spec())

    assert target == tmp_path / "blocks" / "hero"
    assert (target / "code.jsx").read_text().startswith("export default")
    assert json.loads((target / "manifest.json").read_text()) == {"name": "hero"}
    assert json.loads((target / "config.json").read_text())["name"] == "hero"
    assert json.loads((tmp_path / "tapcart.config.json").read_text())["appId"] == "app-1"
    assert (tmp_path / "package.json").exists()
