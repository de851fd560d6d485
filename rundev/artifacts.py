"""
Artifact bundle encoding.

Container and VM sandboxes receive the bundle through environment
variables (base64 encoded) and unpack it with their bootstrap script.
The local process backend has no bootstrap script, so the same layout is
written straight to a workspace directory:

    <root>/tapcart.config.json
    <root>/package.json
    <root>/blocks/<block>/code.jsx
    <root>/blocks/<block>/manifest.json   (optional)
    <root>/blocks/<block>/config.json
"""
from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from rundev.exceptions import InvalidRequest
from rundev.models import SandboxSpec


def normalize_manifest(manifest: Union[str, Dict[str, Any], None]) -> Optional[str]:
    """Manifest as JSON text; objects are serialized, empty values dropped."""
    if manifest is None or manifest == "":
        return None
    if isinstance(manifest, str):
        return manifest
    return json.dumps(manifest)


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def sandbox_env(spec: SandboxSpec) -> Dict[str, str]:
    """Environment consumed by the in-sandbox bootstrap script."""
    return {
        "APP_ID": spec.app_id,
        "BLOCK_NAME": spec.block_name,
        "TAPCART_API_KEY": spec.cli_api_key,
        "CODE_JSX_B64": _b64(spec.code_jsx),
        "MANIFEST_JSON_B64": _b64(spec.manifest_json) if spec.manifest_json else "",
    }


def validate_block_name(block_name: str) -> str:
    """
    Raises:
        InvalidRequest: If the name is not a single path component.
    """
    if (
        not block_name
        or block_name in (".", "..")
        or any(ch in block_name for ch in ("/", "\\", "\x00"))
    ):
        raise InvalidRequest(f"Invalid block name: {block_name!r}")
    return block_name


def block_dir(root: Path, block_name: str) -> Path:
    """Directory for ``block_name`` under ``root``."""
    return root / "blocks" / validate_block_name(block_name)


def write_workspace(root: Path, spec: SandboxSpec) -> Path:
    """Materialize the bundle under ``root``. Returns the block directory."""
    target = block_dir(root, spec.block_name)
    target.mkdir(parents=True, exist_ok=True)

    (root / "tapcart.config.json").write_text(
        json.dumps({"appId": spec.app_id, "dependencies": {}})
    )
    (root / "package.json").write_text(
        json.dumps({"name": "tapcart-dev", "version": "1.0.0", "private": True})
    )
    (target / "code.jsx").write_text(spec.code_jsx)
    if spec.manifest_json:
        (target / "manifest.json").write_text(spec.manifest_json)
    config = target / "config.json"
    if not config.exists():
        config.write_text(json.dumps({"name": spec.block_name, "type": "block"}))
    return target
