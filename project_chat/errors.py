# FILE: project_chat/errors.py
"""Error taxonomy for the change pipeline and the process supervisor.

Every error carries a stable ``kind`` string so that routers and logs can
report the originating failure without matching on class names.
"""
from __future__ import annotations

from typing import List, Optional


class ProjectChatError(Exception):
    """Base class for project chat errors."""

    kind = "ProjectChatError"


class ProjectIOError(ProjectChatError, OSError):
    """Filesystem access failed (missing root, unreadable file, failed write)."""

    kind = "IOError"


class BackendUnavailable(ProjectChatError):
    """Change backend could not be reached (network, auth, missing SDK/key)."""

    kind = "BackendUnavailable"


class BackendTimeout(ProjectChatError):
    kind = "BackendTimeout"


class MalformedResponse(ProjectChatError):
    """Backend response contained no recoverable file blocks."""

    kind = "MalformedResponse"


class PathEscape(ProjectChatError):
    """A file write tried to resolve outside the project root."""

    kind = "PathEscape"

    def __init__(self, path: str, root: str):
        super().__init__(f"Path escapes project root: {path!r} (root={root})")
        self.path = path
        self.root = root


class CheckpointFailed(ProjectChatError):
    kind = "CheckpointFailed"


class ManifestMissing(ProjectChatError):
    kind = "ManifestMissing"


class ManifestInvalid(ProjectChatError):
    kind = "ManifestInvalid"


class SpawnFailed(ProjectChatError):
    kind = "SpawnFailed"


class ProcessAlreadyRunning(ProjectChatError):
    kind = "ProcessAlreadyRunning"


class PortAllocationFailed(ProjectChatError):
    kind = "PortAllocationFailed"


class ChangeInProgress(ProjectChatError):
    """Another change pipeline holds the same project root."""

    kind = "ChangeInProgress"


class ChangeFailed(ProjectChatError):
    """A change pipeline aborted.

    ``stage`` names the step that failed (checkpoint, snapshot, backend,
    extraction, write); ``kind`` is copied from the originating error.
    """

    def __init__(
        self,
        stage: str,
        cause: ProjectChatError,
        applied: Optional[List[str]] = None,
    ):
        super().__init__(f"Change failed during {stage}: [{cause.kind}] {cause}")
        self.stage = stage
        self.cause = cause
        self.kind = cause.kind
        self.applied: List[str] = list(applied or [])

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "kind": self.kind,
            "message": str(self.cause),
            "applied": self.applied,
        }


__all__ = [
    "ProjectChatError",
    "ProjectIOError",
    "BackendUnavailable",
    "BackendTimeout",
    "MalformedResponse",
    "PathEscape",
    "CheckpointFailed",
    "ManifestMissing",
    "ManifestInvalid",
    "SpawnFailed",
    "ProcessAlreadyRunning",
    "PortAllocationFailed",
    "ChangeInProgress",
    "ChangeFailed",
]
