# FILE: project_chat/changes/prompt.py
"""
Change prompt builder.

The snapshot is rendered with the same <file path="...">...</file> framing the
backend is asked to answer in, so a rendered snapshot can be fed straight
back through the extractor.

The answer-format instructions live in CHANGE_SYSTEM_PROMPT (sent as the
system prompt) rather than in the user prompt: an example tag written out in
prose would itself parse as a file block.
"""

from __future__ import annotations

from project_chat.changes.extractor import CLOSE_TAG, OPEN_TAG_PREFIX, OPEN_TAG_SUFFIX
from project_chat.changes.snapshot import DirectorySnapshot


CHANGE_SYSTEM_PROMPT = """You edit software projects.

You are given a change request and the full current contents of a project.
Reply with the complete new contents of every file you create or modify.
Wrap each file in a `file` element whose `path` attribute is the path relative
to the project root, exactly as the project files are presented to you.

Rules:
1. Always send the whole file, never a diff or an excerpt.
2. Only use paths inside the project. No absolute paths, no "..".
3. Files you do not mention are left unchanged.
4. If no change is needed, reply without any file elements."""


def render_file_block(path: str, contents: str) -> str:
    return f"{OPEN_TAG_PREFIX}{path}{OPEN_TAG_SUFFIX}{contents}{CLOSE_TAG}"


def render_snapshot(snapshot: DirectorySnapshot) -> str:
    """Render every snapshot entry as a file block, one per line."""
    return "".join(render_file_block(e.path, e.contents) + "\n" for e in snapshot)


def build_change_prompt(instruction: str, snapshot: DirectorySnapshot) -> str:
    """Compose the user prompt for one change request. Pure."""
    return (
        f"Make the following change to the project: {instruction}\n\n"
        f"Current project structure:\n"
        f"{render_snapshot(snapshot)}"
    )


__all__ = [
    "CHANGE_SYSTEM_PROMPT",
    "render_file_block",
    "render_snapshot",
    "build_change_prompt",
]
