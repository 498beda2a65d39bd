# FILE: project_chat/changes/applier.py
"""
Change applier: checkpoint -> snapshot -> prompt -> backend -> extract -> write.

State machine:

    IDLE -> SNAPSHOTTING -> REQUESTING -> EXTRACTING -> WRITING -> COMMITTED
                 \\_____________\\____________\\___________\\_____-> FAILED

Failure policy:
- Checkpoint failure aborts (stage=checkpoint) unless require_checkpoint=False,
  in which case it is logged and the pipeline continues.
- Snapshot, backend and write errors abort and surface as one ChangeFailed
  carrying the stage and the originating kind.
- PathEscape aborts the remaining writes. Writes already applied stay on disk
  and are reported; the pre-change checkpoint is the recovery point.
- A response with no file blocks is not an error: the change completes with
  produced_change=False.

Only one pipeline may hold a project root at a time; a second request is
rejected with ChangeInProgress rather than queued.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AbstractSet, Iterator, List, Optional, Protocol, Set, Union

from project_chat.changes.backend import ChangeBackend
from project_chat.changes.extractor import ExtractionIssue, FileWrite, extract_file_writes
from project_chat.changes.prompt import build_change_prompt
from project_chat.changes.snapshot import snapshot_directory
from project_chat.config import (
    CHECKPOINT_MESSAGE,
    DEFAULT_IGNORE,
    DEFAULT_SNAPSHOT_MAX_BYTES,
    POST_CHANGE_MESSAGE_PREFIX,
    Settings,
)
from project_chat.errors import (
    BackendTimeout,
    BackendUnavailable,
    ChangeFailed,
    ChangeInProgress,
    CheckpointFailed,
    MalformedResponse,
    PathEscape,
    ProjectChatError,
    ProjectIOError,
)
from project_chat.git_utils import CommitResult, GitGateway

logger = logging.getLogger(__name__)


class ChangeState(str, Enum):
    IDLE = "idle"
    SNAPSHOTTING = "snapshotting"
    REQUESTING = "requesting"
    EXTRACTING = "extracting"
    WRITING = "writing"
    COMMITTED = "committed"
    FAILED = "failed"


class ChangeStage(str, Enum):
    CHECKPOINT = "checkpoint"
    SNAPSHOT = "snapshot"
    BACKEND = "backend"
    EXTRACTION = "extraction"
    WRITE = "write"


class VersionControlGateway(Protocol):
    def is_repository(self) -> bool:
        ...

    def checkpoint(self, message: str) -> CommitResult:
        ...


@dataclass
class ChangeOutcome:
    """Result of a pipeline that reached COMMITTED."""
    instruction: str
    state: ChangeState = ChangeState.IDLE
    applied: List[str] = field(default_factory=list)
    issues: List[ExtractionIssue] = field(default_factory=list)
    produced_change: bool = False
    checkpoint: Optional[CommitResult] = None
    post_checkpoint: Optional[CommitResult] = None

    def to_dict(self) -> dict:
        return {
            "success": self.state == ChangeState.COMMITTED,
            "state": self.state.value,
            "applied": list(self.applied),
            "issues": [{"offset": i.offset, "reason": i.reason} for i in self.issues],
            "produced_change": self.produced_change,
            "checkpoint_commit": self.checkpoint.commit if self.checkpoint else None,
            "post_change_commit": self.post_checkpoint.commit if self.post_checkpoint else None,
        }


# =============================================================================
# SAFE WRITES
# =============================================================================

def resolve_write_path(root: Union[str, Path], rel: str) -> Path:
    """Resolve ``rel`` under ``root``; raise PathEscape if it lands outside."""
    root_resolved = Path(root).resolve()
    rp = Path(rel)
    if rp.is_absolute() or rp.drive:
        raise PathEscape(rel, str(root_resolved))

    candidate = (root_resolved / rp).resolve()
    if candidate == root_resolved:
        raise PathEscape(rel, str(root_resolved))
    try:
        candidate.relative_to(root_resolved)
    except ValueError as e:
        raise PathEscape(rel, str(root_resolved)) from e
    return candidate


def write_file(root: Union[str, Path], fw: FileWrite) -> Path:
    """Create parent directories and overwrite the target unconditionally."""
    target = resolve_write_path(root, fw.path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(fw.contents.encode("utf-8"))
    except OSError as e:
        raise ProjectIOError(f"Cannot write {fw.path}: {e}") from e
    return target


# =============================================================================
# CONCURRENCY GUARD
# =============================================================================

class ChangeLockRegistry:
    """Tracks project roots with a pipeline in flight.

    Thread-safe so that one registry can be shared by every event loop in the
    process (the test client runs the app on its own loop thread).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Set[str] = set()

    @staticmethod
    def _key(root: Union[str, Path]) -> str:
        return str(Path(root).resolve())

    def is_active(self, root: Union[str, Path]) -> bool:
        with self._lock:
            return self._key(root) in self._active

    @contextmanager
    def hold(self, root: Union[str, Path]) -> Iterator[None]:
        key = self._key(root)
        with self._lock:
            if key in self._active:
                raise ChangeInProgress(f"A change is already being applied to {key}")
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)


# =============================================================================
# APPLIER
# =============================================================================

class ChangeApplier:
    def __init__(
        self,
        root: Union[str, Path],
        backend: ChangeBackend,
        *,
        gateway: Optional[VersionControlGateway] = None,
        locks: Optional[ChangeLockRegistry] = None,
        ignore: AbstractSet[str] = DEFAULT_IGNORE,
        max_snapshot_bytes: int = DEFAULT_SNAPSHOT_MAX_BYTES,
        skip_binary: bool = True,
        require_checkpoint: bool = True,
        commit_after: bool = True,
    ):
        self.root = Path(root)
        self.backend = backend
        self.gateway = gateway if gateway is not None else GitGateway(self.root)
        self.locks = locks if locks is not None else ChangeLockRegistry()
        self.ignore = ignore
        self.max_snapshot_bytes = max_snapshot_bytes
        self.skip_binary = skip_binary
        self.require_checkpoint = require_checkpoint
        self.commit_after = commit_after
        self.state = ChangeState.IDLE

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        backend: ChangeBackend,
        *,
        gateway: Optional[VersionControlGateway] = None,
        locks: Optional[ChangeLockRegistry] = None,
    ) -> "ChangeApplier":
        return cls(
            settings.project_path,
            backend,
            gateway=gateway,
            locks=locks,
            ignore=settings.ignore,
            max_snapshot_bytes=settings.snapshot_max_bytes,
            skip_binary=settings.snapshot_skip_binary,
            require_checkpoint=settings.require_checkpoint,
            commit_after=settings.commit_after_change,
        )

    @property
    def busy(self) -> bool:
        return self.locks.is_active(self.root)

    def _transition(self, state: ChangeState) -> None:
        logger.debug("[applier] %s -> %s", self.state.value, state.value)
        self.state = state

    def _fail(self, stage: ChangeStage, err: ProjectChatError, applied: Optional[List[str]] = None) -> ChangeFailed:
        self._transition(ChangeState.FAILED)
        logger.error("[applier] Change failed at %s: [%s] %s", stage.value, err.kind, err)
        return ChangeFailed(stage.value, err, applied)

    async def apply_change(self, instruction: str) -> ChangeOutcome:
        """
        Run the full pipeline for one natural-language instruction.

        Raises:
            ChangeInProgress: another pipeline holds this root
            ChangeFailed: any stage aborted (see .stage / .kind / .applied)
        """
        with self.locks.hold(self.root):
            logger.info("[applier] Making change: %s", instruction)
            self._transition(ChangeState.IDLE)
            try:
                return await self._run(instruction)
            except ChangeFailed:
                raise
            except Exception:
                self._transition(ChangeState.FAILED)
                raise

    async def _run(self, instruction: str) -> ChangeOutcome:
        outcome = ChangeOutcome(instruction=instruction)

        # 1. Checkpoint + snapshot
        self._transition(ChangeState.SNAPSHOTTING)
        outcome.checkpoint = await asyncio.to_thread(self.gateway.checkpoint, CHECKPOINT_MESSAGE)
        if not outcome.checkpoint.success:
            msg = outcome.checkpoint.error_message or "checkpoint failed"
            if self.require_checkpoint:
                raise self._fail(ChangeStage.CHECKPOINT, CheckpointFailed(msg))
            logger.warning("[applier] Checkpoint failed, continuing without one: %s", msg)

        try:
            snapshot = await asyncio.to_thread(
                snapshot_directory,
                self.root,
                ignore=self.ignore,
                max_total_bytes=self.max_snapshot_bytes,
                skip_binary=self.skip_binary,
            )
        except ProjectIOError as e:
            raise self._fail(ChangeStage.SNAPSHOT, e) from e

        # 2. Backend
        self._transition(ChangeState.REQUESTING)
        prompt = build_change_prompt(instruction, snapshot)
        try:
            response = await self.backend.submit(prompt)
        except (BackendUnavailable, BackendTimeout) as e:
            raise self._fail(ChangeStage.BACKEND, e) from e
        logger.debug("[applier] Backend response: %s", (response or "")[:100])

        # 3. Extraction
        self._transition(ChangeState.EXTRACTING)
        try:
            extraction = extract_file_writes(response or "")
        except Exception as e:
            raise self._fail(ChangeStage.EXTRACTION, MalformedResponse(str(e))) from e
        outcome.issues = list(extraction.issues)
        outcome.produced_change = not extraction.is_empty
        if extraction.is_empty:
            logger.info("[applier] [%s] Backend proposed no file changes", MalformedResponse.kind)

        # 4. Writes
        self._transition(ChangeState.WRITING)
        for fw in extraction.writes:
            try:
                await asyncio.to_thread(write_file, self.root, fw)
            except (PathEscape, ProjectIOError) as e:
                raise self._fail(ChangeStage.WRITE, e, outcome.applied) from e
            logger.info("[applier] Wrote %s", fw.path)
            outcome.applied.append(fw.path)

        # 5. Done
        self._transition(ChangeState.COMMITTED)
        outcome.state = ChangeState.COMMITTED
        if self.commit_after and outcome.applied:
            outcome.post_checkpoint = await asyncio.to_thread(
                self.gateway.checkpoint, POST_CHANGE_MESSAGE_PREFIX + instruction
            )
            if not outcome.post_checkpoint.success:
                logger.warning("[applier] Post-change commit failed: %s", outcome.post_checkpoint.error_message)

        logger.info("[applier] Change applied: %d file(s) written", len(outcome.applied))
        return outcome


__all__ = [
    "ChangeState",
    "ChangeStage",
    "ChangeOutcome",
    "VersionControlGateway",
    "ChangeLockRegistry",
    "ChangeApplier",
    "resolve_write_path",
    "write_file",
]
