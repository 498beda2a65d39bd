# FILE: tests/conftest.py
"""
Pytest configuration for the project chat test suite.

Configures:
- pytest-asyncio for async test support
- shared fakes for the change backend and the git gateway
"""
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import pytest

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from project_chat.git_utils import CommitResult, GitError

pytest_plugins = ["pytest_asyncio"]


class FakeBackend:
    """Change backend returning a canned response (or raising).

    With ``gated=True`` the call blocks until ``release()``; ``started`` is
    set as soon as a prompt arrives.
    """

    def __init__(self, response: str = "", error: Optional[Exception] = None, gated: bool = False):
        self.response = response
        self.error = error
        self.prompts: List[str] = []
        self.gated = gated
        self.started = asyncio.Event()
        self._gate = asyncio.Event()

    def release(self) -> None:
        self._gate.set()

    async def submit(self, prompt: str) -> str:
        self.prompts.append(prompt)
        self.started.set()
        if self.gated:
            await self._gate.wait()
        if self.error is not None:
            raise self.error
        return self.response


class FakeGateway:
    """Version-control gateway that records checkpoint messages."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.messages: List[str] = []

    def is_repository(self) -> bool:
        return self.ok

    def checkpoint(self, message: str) -> CommitResult:
        self.messages.append(message)
        if not self.ok:
            return CommitResult(
                success=False,
                error=GitError.NO_GIT_REPO,
                error_message="Not a git repository",
            )
        return CommitResult(success=True, committed=True, commit=f"c{len(self.messages)}")


def write_manifest(root: Path, start: str, args=None, env=None, **extra) -> Path:
    data = {"start": start, "args": list(args or []), "env": dict(env or {})}
    data.update(extra)
    path = root / "ntwk.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def python_manifest(root: Path, script: str, env=None, **extra) -> Path:
    """Manifest that runs ``script`` with the current interpreter."""
    return write_manifest(root, sys.executable, ["-c", script], env=env, **extra)


@pytest.fixture
def project_dir(tmp_path):
    """Small project tree with files at several depths."""
    root = tmp_path / "project"
    (root / "src" / "lib").mkdir(parents=True)
    (root / "README.md").write_text("# Demo\n", encoding="utf-8")
    (root / "src" / "app.js").write_text('console.log("hi");\n', encoding="utf-8")
    (root / "src" / "lib" / "util.js").write_text("module.exports = {};\n", encoding="utf-8")
    return root


@pytest.fixture
def fake_gateway():
    return FakeGateway()
