# FILE: project_chat/config.py
"""Configuration constants and settings for project chat.

Values come from the environment (``main.py`` loads ``.env`` first via
python-dotenv). Module-level constants hold the defaults; ``load_settings()``
snapshots them into a frozen ``Settings`` so tests can build their own.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional


# =============================================================================
# HELPERS
# =============================================================================

def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str) -> FrozenSet[str]:
    raw = os.getenv(name, "")
    return frozenset(p.strip() for p in raw.split(",") if p.strip())


# =============================================================================
# DEFAULTS
# =============================================================================

MANIFEST_FILENAME = "ntwk.json"

DEFAULT_SERVER_PORT = 3000
DEFAULT_PROJECT_PATH = "./"

# Change backend
DEFAULT_MODEL = "claude-3-5-sonnet-20240620"
DEFAULT_MAX_TOKENS = 1024
DEFAULT_BACKEND_TIMEOUT_SEC = 120.0

# Snapshot budget (0 disables the cap)
DEFAULT_SNAPSHOT_MAX_BYTES = 500_000

# Entry names skipped at any depth when flattening a project
DEFAULT_IGNORE: FrozenSet[str] = frozenset({
    "node_modules",
    ".git",
    ".directory-chat-log",
    "logs",
    ".uploader.lock",
    "__pycache__",
    ".venv",
    ".pytest_cache",
})

CHECKPOINT_MESSAGE = "Change before applying new change"
POST_CHANGE_MESSAGE_PREFIX = "Apply change: "

DEFAULT_SHUTDOWN_GRACE_SEC = 5.0
DEFAULT_BIND_HOST = "127.0.0.1"

# Lines of recent child output kept per supervisor for status queries
OUTPUT_TAIL_LINES = 200


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass(frozen=True)
class Settings:
    """Runtime settings for one server instance."""
    server_port: int = DEFAULT_SERVER_PORT
    project_path: str = DEFAULT_PROJECT_PATH
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    backend_timeout_seconds: float = DEFAULT_BACKEND_TIMEOUT_SEC
    snapshot_max_bytes: int = DEFAULT_SNAPSHOT_MAX_BYTES
    snapshot_skip_binary: bool = True
    ignore: FrozenSet[str] = field(default_factory=lambda: DEFAULT_IGNORE)
    require_checkpoint: bool = True
    commit_after_change: bool = True
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SEC
    bind_host: str = DEFAULT_BIND_HOST
    log_level: str = "INFO"
    anthropic_api_key: Optional[str] = None


def load_settings(
    *,
    server_port: Optional[int] = None,
    project_path: Optional[str] = None,
) -> Settings:
    """Build Settings from the environment; explicit arguments win."""
    return Settings(
        server_port=server_port if server_port is not None else _env_int("PROJECT_CHAT_PORT", DEFAULT_SERVER_PORT),
        project_path=project_path or os.getenv("PROJECT_CHAT_PROJECT_PATH", DEFAULT_PROJECT_PATH),
        model=os.getenv("PROJECT_CHAT_MODEL", DEFAULT_MODEL),
        max_tokens=_env_int("PROJECT_CHAT_MAX_TOKENS", DEFAULT_MAX_TOKENS),
        backend_timeout_seconds=_env_float("PROJECT_CHAT_BACKEND_TIMEOUT_SEC", DEFAULT_BACKEND_TIMEOUT_SEC),
        snapshot_max_bytes=_env_int("PROJECT_CHAT_SNAPSHOT_MAX_BYTES", DEFAULT_SNAPSHOT_MAX_BYTES),
        snapshot_skip_binary=_env_bool("PROJECT_CHAT_SNAPSHOT_SKIP_BINARY", True),
        ignore=DEFAULT_IGNORE | _env_list("PROJECT_CHAT_EXTRA_IGNORE"),
        require_checkpoint=_env_bool("PROJECT_CHAT_REQUIRE_CHECKPOINT", True),
        commit_after_change=_env_bool("PROJECT_CHAT_COMMIT_AFTER_CHANGE", True),
        shutdown_grace_seconds=_env_float("PROJECT_CHAT_SHUTDOWN_GRACE_SEC", DEFAULT_SHUTDOWN_GRACE_SEC),
        bind_host=os.getenv("PROJECT_CHAT_BIND_HOST", DEFAULT_BIND_HOST),
        log_level=os.getenv("PROJECT_CHAT_LOG_LEVEL", "INFO").upper(),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
    )


__all__ = [
    "MANIFEST_FILENAME",
    "DEFAULT_IGNORE",
    "CHECKPOINT_MESSAGE",
    "POST_CHANGE_MESSAGE_PREFIX",
    "OUTPUT_TAIL_LINES",
    "Settings",
    "load_settings",
]
