# FILE: project_chat/changes/extractor.py
"""
Response file extractor.

Scans a backend response for blocks of the form

    <file path="RELATIVE_PATH">RAW_CONTENTS</file>

and returns them as FileWrites in order of appearance. This is a small
scanning parser rather than one regex so that the skip policy is explicit:

- An opening tag whose path is never closed by `">` ends the scan (no later
  block can be well-formed either).
- An opening tag whose path runs into another `<file path="` is skipped and
  scanning resumes at the inner opener.
- A block with an empty path is skipped as a whole.
- A block with no `</file>` after it ends the scan.

Contents run up to the first `</file>` and are returned byte-exact; they may
contain newlines, quotes and even other opening tags. Duplicate paths are
kept; the later write wins when applied. No blocks at all is a valid result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, List

logger = logging.getLogger(__name__)

OPEN_TAG_PREFIX = '<file path="'
OPEN_TAG_SUFFIX = '">'
CLOSE_TAG = "</file>"


@dataclass(frozen=True)
class FileWrite:
    """Full replacement contents for one path relative to the project root."""
    path: str
    contents: str


@dataclass(frozen=True)
class ExtractionIssue:
    offset: int
    reason: str


@dataclass
class ExtractionResult:
    writes: List[FileWrite] = field(default_factory=list)
    issues: List[ExtractionIssue] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.writes)

    def __iter__(self) -> Iterator[FileWrite]:
        return iter(self.writes)

    @property
    def is_empty(self) -> bool:
        return not self.writes


def extract_file_writes(text: str) -> ExtractionResult:
    """Parse every well-formed file block out of ``text``."""
    result = ExtractionResult()
    if not text:
        return result

    pos = 0
    while True:
        start = text.find(OPEN_TAG_PREFIX, pos)
        if start == -1:
            break

        path_start = start + len(OPEN_TAG_PREFIX)
        path_end = text.find(OPEN_TAG_SUFFIX, path_start)
        if path_end == -1:
            result.issues.append(ExtractionIssue(start, "unterminated opening tag"))
            break

        inner_open = text.find(OPEN_TAG_PREFIX, path_start)
        if inner_open != -1 and inner_open < path_end:
            result.issues.append(ExtractionIssue(start, "opening tag interrupted by another block"))
            pos = inner_open
            continue

        content_start = path_end + len(OPEN_TAG_SUFFIX)
        close = text.find(CLOSE_TAG, content_start)
        if close == -1:
            result.issues.append(ExtractionIssue(start, "missing closing tag"))
            break

        path = text[path_start:path_end].strip()
        if not path:
            result.issues.append(ExtractionIssue(start, "empty path"))
        else:
            result.writes.append(FileWrite(path=path, contents=text[content_start:close]))

        pos = close + len(CLOSE_TAG)

    for issue in result.issues:
        logger.warning("[extractor] Skipped malformed block at offset %d: %s", issue.offset, issue.reason)
    logger.info("[extractor] %d file block(s) found", len(result.writes))
    return result


def extract(text: str) -> List[FileWrite]:
    """Convenience wrapper returning only the writes."""
    return extract_file_writes(text).writes


__all__ = [
    "OPEN_TAG_PREFIX",
    "OPEN_TAG_SUFFIX",
    "CLOSE_TAG",
    "FileWrite",
    "ExtractionIssue",
    "ExtractionResult",
    "extract_file_writes",
    "extract",
]
