# FILE: project_chat/changes/__init__.py
"""Change pipeline.

Components:
- snapshot.py: flatten a project directory into (path, contents) entries
- prompt.py: render the change prompt in <file path="..."> framing
- backend.py: submit the prompt to the text-generation backend
- extractor.py: parse file blocks out of the backend's answer
- applier.py: state machine tying it together, with git checkpoints
- router.py: FastAPI endpoint

Usage:
    from project_chat.changes import ChangeApplier, AnthropicChangeBackend

    applier = ChangeApplier("/path/to/project", AnthropicChangeBackend())
    outcome = await applier.apply_change("add a /health endpoint")
"""

from project_chat.changes.applier import (
    ChangeApplier,
    ChangeLockRegistry,
    ChangeOutcome,
    ChangeStage,
    ChangeState,
)
from project_chat.changes.backend import AnthropicChangeBackend, ChangeBackend
from project_chat.changes.extractor import FileWrite, extract, extract_file_writes
from project_chat.changes.prompt import build_change_prompt
from project_chat.changes.snapshot import DirectorySnapshot, SnapshotEntry, snapshot_directory

__all__ = [
    "ChangeApplier",
    "ChangeLockRegistry",
    "ChangeOutcome",
    "ChangeStage",
    "ChangeState",
    "AnthropicChangeBackend",
    "ChangeBackend",
    "FileWrite",
    "extract",
    "extract_file_writes",
    "build_change_prompt",
    "DirectorySnapshot",
    "SnapshotEntry",
    "snapshot_directory",
]
