"""Tests for ralphdev.lib.config and ralphdev.lib.envparse modules."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from ralphdev.lib import constants
from ralphdev.lib.config import load_config, resolve_workspace
from ralphdev.lib.envparse import load_env, parse_env


class TestParseEnv:

    def test_basic(self):
        text = """
# comment
LOCK_TIMEOUT=5
export USE_LOCK=false
RALPH_DEV_CB_TIMEOUT_MS="1000"
"""
        assert parse_env(text) == {
            "LOCK_TIMEOUT": "5",
            "USE_LOCK": "false",
            "RALPH_DEV_CB_TIMEOUT_MS": "1000",
        }

    @pytest.mark.parametrize("line", [
        "NO_EQUALS",
        "lower=1",
        "CMD=$(rm -rf /)",
        "CMD=`whoami`",
        "VAL=${HOME}",
        "A=1; B=2",
        "A=x | y",
    ])
    def test_rejects(self, line):
        with pytest.raises(ValueError):
            parse_env(line, source="config.env")

    def test_error_names_line(self):
        with pytest.raises(ValueError, match="config.env:2"):
            parse_env("A=1\nbroken", source="config.env")

    def test_load_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_env(tmp_path / "config.env")


class TestResolveWorkspace:

    def test_explicit_wins(self, tmp_path):
        assert resolve_workspace(str(tmp_path), environ={"RALPH_DEV_WORKSPACE": "/elsewhere"}) == tmp_path.resolve()

    def test_environment(self, tmp_path):
        assert resolve_workspace(None, environ={"RALPH_DEV_WORKSPACE": str(tmp_path)}) == tmp_path.resolve()

    def test_cwd_fallback(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert resolve_workspace(None, environ={}) == tmp_path.resolve()


class TestLoadConfig:

    def write_env(self, workspace, text):
        path = workspace / constants.STATE_DIR_NAME / constants.CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)

    def test_defaults(self, tmp_path):
        config = load_config(tmp_path, environ={})
        assert config.lock_timeout == constants.LOCK_TIMEOUT_SECONDS
        assert config.use_lock is True
        assert config.cb_failure_threshold == constants.CB_FAILURE_THRESHOLD
        assert config.state_dir == tmp_path / ".ralph-dev"
        assert config.tasks_dir == tmp_path / ".ralph-dev" / "tasks"

    def test_file_values(self, tmp_path):
        self.write_env(tmp_path, "LOCK_TIMEOUT=2.5\nRALPH_DEV_CB_FAILURE_THRESHOLD=7\nUSE_LOCK=no\n")
        config = load_config(tmp_path, environ={})
        assert config.lock_timeout == 2.5
        assert config.cb_failure_threshold == 7
        assert config.use_lock is False

    def test_environment_overrides_file(self, tmp_path):
        self.write_env(tmp_path, "RETRY_MAX_ATTEMPTS=4\n")
        config = load_config(tmp_path, environ={"RALPH_DEV_RETRY_MAX_ATTEMPTS": "9"})
        assert config.retry_max_attempts == 9

    def test_unrelated_environment_ignored(self, tmp_path):
        config = load_config(tmp_path, environ={"RETRY_MAX_ATTEMPTS": "9"})
        assert config.retry_max_attempts == constants.RETRY_MAX_ATTEMPTS

    def test_invalid_value_ignored_with_warning(self, tmp_path, caplog):
        caplog.set_level(logging.WARNING)
        config = load_config(tmp_path, environ={"RALPH_DEV_CB_TIMEOUT_MS": "soon"})
        assert config.cb_timeout_ms == constants.CB_TIMEOUT_MS
        assert "Ignoring invalid CB_TIMEOUT_MS='soon'" in caplog.text

    def test_attempts_floor(self, tmp_path, caplog):
        caplog.set_level(logging.WARNING)
        config = load_config(tmp_path, environ={"RALPH_DEV_RETRY_MAX_ATTEMPTS": "0"})
        assert config.retry_max_attempts == 1
        assert "RETRY_MAX_ATTEMPTS must be >= 1" in caplog.text

    @patch("ralphdev.lib.config.envparse.load_env")
    def test_unsafe_file_ignored(self, mock_load_env, tmp_path, caplog):
        caplog.set_level(logging.WARNING)
        self.write_env(tmp_path, "placeholder")
        mock_load_env.side_effect = ValueError("config.env:1: Forbidden pattern in value for X")
        config = load_config(tmp_path, environ={})
        assert config.lock_timeout == constants.LOCK_TIMEOUT_SECONDS
        assert "Forbidden pattern" in caplog.text

    def test_accepts_str_workspace(self, tmp_path):
        assert load_config(str(tmp_path), environ={}).workspace == Path(str(tmp_path))
