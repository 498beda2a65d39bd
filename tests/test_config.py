# FILE: tests/test_config.py
"""
Tests for project_chat/config.py
"""

import pytest

from project_chat.config import DEFAULT_IGNORE, DEFAULT_SERVER_PORT, load_settings

_ENV_VARS = [
    "PROJECT_CHAT_PORT",
    "PROJECT_CHAT_PROJECT_PATH",
    "PROJECT_CHAT_MODEL",
    "PROJECT_CHAT_MAX_TOKENS",
    "PROJECT_CHAT_REQUIRE_CHECKPOINT",
    "PROJECT_CHAT_EXTRA_IGNORE",
    "PROJECT_CHAT_SNAPSHOT_MAX_BYTES",
    "PROJECT_CHAT_LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadSettings:
    def test_defaults(self, clean_env):
        s = load_settings()
        assert s.server_port == DEFAULT_SERVER_PORT
        assert s.project_path == "./"
        assert s.require_checkpoint is True
        assert s.ignore == DEFAULT_IGNORE

    def test_environment(self, clean_env):
        clean_env.setenv("PROJECT_CHAT_PORT", "4100")
        clean_env.setenv("PROJECT_CHAT_MODEL", "other-model")
        clean_env.setenv("PROJECT_CHAT_REQUIRE_CHECKPOINT", "false")
        clean_env.setenv("PROJECT_CHAT_EXTRA_IGNORE", "dist, build ,")
        clean_env.setenv("PROJECT_CHAT_LOG_LEVEL", "debug")

        s = load_settings()

        assert s.server_port == 4100
        assert s.model == "other-model"
        assert s.require_checkpoint is False
        assert {"dist", "build"} <= s.ignore
        assert DEFAULT_IGNORE <= s.ignore
        assert s.log_level == "DEBUG"

    def test_arguments_win(self, clean_env):
        clean_env.setenv("PROJECT_CHAT_PORT", "4100")
        clean_env.setenv("PROJECT_CHAT_PROJECT_PATH", "/env/path")

        s = load_settings(server_port=5000, project_path="/arg/path")

        assert s.server_port == 5000
        assert s.project_path == "/arg/path"

    def test_bad_numbers_fall_back(self, clean_env):
        clean_env.setenv("PROJECT_CHAT_MAX_TOKENS", "lots")
        clean_env.setenv("PROJECT_CHAT_SNAPSHOT_MAX_BYTES", "")

        s = load_settings()

        assert s.max_tokens == 1024
        assert s.snapshot_max_bytes == 500_000
