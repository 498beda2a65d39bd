# FILE: project_chat/manifest.py
"""
Project manifest (ntwk.json) loading.

The manifest is read fresh on every operation so that edits made between
calls (including edits written by a change) take effect on the next call.

Shape:
    {
        "start": "node",
        "args": ["server.js"],
        "env": {"NODE_ENV": "development"},
        "name": "...anything else is kept verbatim..."
    }

The older nested form {"start": {"command": "node", "args": [...]}} is also
accepted.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from project_chat.config import MANIFEST_FILENAME
from project_chat.errors import ManifestInvalid, ManifestMissing

logger = logging.getLogger(__name__)


class ProjectManifest(BaseModel):
    """Parsed ntwk.json. Extra descriptive fields are kept as-is."""

    model_config = ConfigDict(extra="allow", frozen=True)

    start: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def unwrap_nested_start(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("start"), dict):
            data = dict(data)
            nested = data["start"]
            data["start"] = nested.get("command")
            if "args" not in data and "args" in nested:
                data["args"] = nested["args"]
        return data

    @field_validator("start")
    @classmethod
    def require_command(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("start command is empty")
        return v

    @field_validator("args", mode="before")
    @classmethod
    def normalize_args(cls, v):
        if v is None:
            return []
        if not isinstance(v, (list, tuple)):
            raise ValueError("args must be a list of strings")
        return [str(a) for a in v]

    @field_validator("env", mode="before")
    @classmethod
    def normalize_env(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("env must be an object")
        return {str(k): str(val) for k, val in v.items()}


def manifest_path(project_root: Union[str, Path]) -> Path:
    return Path(project_root) / MANIFEST_FILENAME


def read_manifest_data(project_root: Union[str, Path]) -> Dict[str, Any]:
    """Read ntwk.json as a raw JSON object."""
    path = manifest_path(project_root)
    if not path.is_file():
        raise ManifestMissing(f"No {MANIFEST_FILENAME} found in {project_root}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ManifestInvalid(f"{path} is not valid JSON: {e}") from e
    except OSError as e:
        raise ManifestMissing(f"Could not read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ManifestInvalid(f"{path} must contain a JSON object")
    return data


def load_manifest(project_root: Union[str, Path]) -> ProjectManifest:
    """Load and validate the manifest for ``project_root``."""
    data = read_manifest_data(project_root)
    if data.get("start") in (None, ""):
        raise ManifestInvalid(f"{MANIFEST_FILENAME} has no start command")
    try:
        return ProjectManifest.model_validate(data)
    except ValidationError as e:
        raise ManifestInvalid(f"{MANIFEST_FILENAME} is invalid: {e}") from e


def project_info(project_root: Union[str, Path]) -> Dict[str, Any]:
    """Manifest contents plus the project path, otherwise unmodified."""
    info = read_manifest_data(project_root)
    info["path"] = str(project_root)
    logger.info("[manifest] Project info: %s", info)
    return info


__all__ = [
    "ProjectManifest",
    "manifest_path",
    "read_manifest_data",
    "load_manifest",
    "project_info",
]
