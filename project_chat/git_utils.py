# FILE: project_chat/git_utils.py
"""
Git utilities for project chat.

Provides the version-control checkpoint used before (and optionally after)
each change: "is this a repository", "stage all", "commit with message".

INVARIANT: No pushes, pulls, resets, merges or branch switching. The only
mutation is `git add -A` followed by `git commit`.
"""
from __future__ import annotations
import subprocess
from pathlib import Path
from typing import List, Optional, Union
from dataclasses import dataclass
from enum import Enum
import logging

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SEC = 30


class GitError(Enum):
    """Git operation error types."""
    NO_GIT_REPO = "NO_GIT_REPO"
    UNRESOLVED_COMMIT = "UNRESOLVED_COMMIT"
    STAGE_FAILED = "STAGE_FAILED"
    COMMIT_FAILED = "COMMIT_FAILED"
    GIT_NOT_INSTALLED = "GIT_NOT_INSTALLED"
    TIMEOUT = "TIMEOUT"


@dataclass
class GitResult:
    """Result of a read-only git operation."""
    success: bool
    value: Optional[str] = None
    error: Optional[GitError] = None
    error_message: Optional[str] = None


@dataclass
class CommitResult:
    """Result of a checkpoint commit.

    A clean working tree is a successful checkpoint with ``committed=False``:
    the current HEAD already is the recovery point.
    """
    success: bool
    committed: bool = False
    commit: Optional[str] = None
    error: Optional[GitError] = None
    error_message: Optional[str] = None


def _run_git(args: List[str], cwd: Union[str, Path]) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        timeout=GIT_TIMEOUT_SEC,
    )


def get_current_commit(repo_path: Union[str, Path]) -> GitResult:
    """
    Get the HEAD commit hash for a repository.

    Returns UNRESOLVED_COMMIT for a repository without any commits yet.
    """
    try:
        result = _run_git(["rev-parse", "HEAD"], repo_path)
    except FileNotFoundError:
        return GitResult(
            success=False,
            error=GitError.GIT_NOT_INSTALLED,
            error_message="git command not found - is git installed?",
        )
    except subprocess.TimeoutExpired:
        return GitResult(
            success=False,
            error=GitError.TIMEOUT,
            error_message=f"git rev-parse timed out after {GIT_TIMEOUT_SEC} seconds",
        )

    commit_hash = result.stdout.strip()
    if result.returncode == 0 and commit_hash:
        return GitResult(success=True, value=commit_hash)
    return GitResult(
        success=False,
        error=GitError.UNRESOLVED_COMMIT,
        error_message=f"git rev-parse failed: {result.stderr.strip()}",
    )


def is_git_repo(path: Union[str, Path]) -> bool:
    """Check if path is inside a git work tree (commits not required)."""
    if not Path(path).is_dir():
        return False
    try:
        result = _run_git(["rev-parse", "--is-inside-work-tree"], path)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0 and result.stdout.strip() == "true"


def checkpoint(repo_path: Union[str, Path], message: str) -> CommitResult:
    """
    Stage everything in the work tree and commit it with ``message``.

    Never raises for git-level failures; callers decide whether a failed
    checkpoint is fatal.

    Usage:
        result = checkpoint("/path/to/project", "Change before applying new change")
        if not result.success:
            handle_error(result.error)
    """
    if not is_git_repo(repo_path):
        return CommitResult(
            success=False,
            error=GitError.NO_GIT_REPO,
            error_message=f"Not a git repository: {repo_path}",
        )

    try:
        staged = _run_git(["add", "-A"], repo_path)
        if staged.returncode != 0:
            return CommitResult(
                success=False,
                error=GitError.STAGE_FAILED,
                error_message=f"git add failed: {staged.stderr.strip()}",
            )

        status = _run_git(["status", "--porcelain"], repo_path)
        if status.returncode == 0 and not status.stdout.strip():
            head = get_current_commit(repo_path)
            logger.info("[git] Nothing to commit in %s; HEAD=%s", repo_path, head.value)
            return CommitResult(success=True, committed=False, commit=head.value)

        committed = _run_git(["commit", "-m", message], repo_path)
        if committed.returncode != 0:
            return CommitResult(
                success=False,
                error=GitError.COMMIT_FAILED,
                error_message=f"git commit failed: {(committed.stderr or committed.stdout).strip()}",
            )
    except FileNotFoundError:
        return CommitResult(
            success=False,
            error=GitError.GIT_NOT_INSTALLED,
            error_message="git command not found - is git installed?",
        )
    except subprocess.TimeoutExpired:
        return CommitResult(
            success=False,
            error=GitError.TIMEOUT,
            error_message=f"git timed out after {GIT_TIMEOUT_SEC} seconds",
        )

    head = get_current_commit(repo_path)
    logger.info("[git] Checkpoint %s: %s", head.value, message)
    return CommitResult(success=True, committed=True, commit=head.value)


class GitGateway:
    """Version-control gateway bound to one project root.

    The change applier only talks to this interface, so tests can swap in a
    fake without a git binary.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def is_repository(self) -> bool:
        return is_git_repo(self.root)

    def checkpoint(self, message: str) -> CommitResult:
        return checkpoint(self.root, message)


__all__ = [
    "GitError",
    "GitResult",
    "CommitResult",
    "GitGateway",
    "get_current_commit",
    "is_git_repo",
    "checkpoint",
]
