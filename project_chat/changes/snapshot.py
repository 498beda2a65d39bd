# FILE: project_chat/changes/snapshot.py
"""Directory snapshotter: flattens a project directory for a change prompt.

Walks depth-first with entries sorted by name, so the same tree always
produces the same snapshot. Any failure to read the tree aborts the whole
snapshot; a partial view would mislead the change backend.

Truncation policy:
- skip_binary: files with a NUL byte in the first 8 KiB, or that are not
  valid UTF-8, are left out and listed in ``skipped``
- max_total_bytes: a file that would push the running total over the budget
  is left out and listed in ``skipped``; the walk continues (0 = no cap)
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import AbstractSet, Iterator, List, Optional, Set, Tuple, Union

from project_chat.config import DEFAULT_IGNORE, DEFAULT_SNAPSHOT_MAX_BYTES
from project_chat.errors import ProjectIOError

logger = logging.getLogger(__name__)

BINARY_SNIFF_BYTES = 8192


# =============================================================================
# RESULT STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class SnapshotEntry:
    """One file: POSIX path relative to the project root, and its text."""
    path: str
    contents: str


@dataclass
class DirectorySnapshot:
    entries: List[SnapshotEntry] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)  # (path, reason)
    total_bytes: int = 0

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[SnapshotEntry]:
        return iter(self.entries)

    def paths(self) -> List[str]:
        return [e.path for e in self.entries]


def _looks_binary(data: bytes) -> bool:
    return b"\0" in data[:BINARY_SNIFF_BYTES]


# =============================================================================
# WALK
# =============================================================================

class _Walker:
    def __init__(
        self,
        root: Path,
        ignore: AbstractSet[str],
        max_total_bytes: int,
        skip_binary: bool,
    ):
        self.root = root
        self.ignore = ignore
        self.max_total_bytes = max_total_bytes
        self.skip_binary = skip_binary
        self.snapshot = DirectorySnapshot()

    def walk(self, directory: Path, prefix: str, ancestors: Set[Path]) -> None:
        try:
            children = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise ProjectIOError(f"Cannot list directory {directory}: {e}") from e

        for child in children:
            if child.name in self.ignore:
                continue
            rel = f"{prefix}{child.name}"

            try:
                mode = child.stat().st_mode
            except OSError as e:
                if child.is_symlink():
                    logger.info("[snapshot] Skipping dangling symlink %s", rel)
                    continue
                raise ProjectIOError(f"Cannot stat {rel}: {e}") from e

            if stat.S_ISDIR(mode):
                real = child.resolve()
                if real in ancestors:
                    logger.warning("[snapshot] Skipping symlink cycle at %s -> %s", rel, real)
                    continue
                self.walk(child, rel + "/", ancestors | {real})
            elif stat.S_ISREG(mode):
                self._add_file(child, rel)

    def _add_file(self, path: Path, rel: str) -> None:
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ProjectIOError(f"Cannot read {rel}: {e}") from e

        if self.skip_binary and _looks_binary(data):
            self.snapshot.skipped.append((rel, "binary"))
            return
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            if self.skip_binary:
                self.snapshot.skipped.append((rel, "not utf-8"))
                return
            text = data.decode("utf-8", errors="replace")

        size = len(data)
        if self.max_total_bytes and self.snapshot.total_bytes + size > self.max_total_bytes:
            self.snapshot.skipped.append((rel, "size budget"))
            return

        self.snapshot.entries.append(SnapshotEntry(path=rel, contents=text))
        self.snapshot.total_bytes += size


def snapshot_directory(
    root: Union[str, Path],
    *,
    ignore: Optional[AbstractSet[str]] = None,
    max_total_bytes: int = DEFAULT_SNAPSHOT_MAX_BYTES,
    skip_binary: bool = True,
) -> DirectorySnapshot:
    """
    Flatten every non-ignored file under ``root`` into a DirectorySnapshot.

    Args:
        root: Project directory
        ignore: Entry names skipped at any depth (defaults to DEFAULT_IGNORE)
        max_total_bytes: Byte budget for included contents (0 = unlimited)
        skip_binary: Leave out binary / non UTF-8 files

    Raises:
        ProjectIOError: root missing, or any entry unreadable during the walk
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise ProjectIOError(f"Project root does not exist or is not a directory: {root}")

    walker = _Walker(
        root=root_path,
        ignore=DEFAULT_IGNORE if ignore is None else ignore,
        max_total_bytes=max_total_bytes,
        skip_binary=skip_binary,
    )
    walker.walk(root_path, "", {root_path.resolve()})
    snap = walker.snapshot

    logger.info(
        "[snapshot] %s: %d files, %d bytes, %d skipped",
        os.fspath(root_path), len(snap.entries), snap.total_bytes, len(snap.skipped),
    )
    if snap.skipped:
        logger.debug("[snapshot] Skipped: %s", snap.skipped)
    return snap


__all__ = [
    "SnapshotEntry",
    "DirectorySnapshot",
    "snapshot_directory",
]
