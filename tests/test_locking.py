"""Tests for ralphdev.lib.locking module."""

import fcntl

import pytest

from ralphdev.lib.errors import LockTimeout
from ralphdev.lib.locking import is_locked, workspace_lock


class TestWorkspaceLock:

    def test_creates_lock_file(self, tmp_path):
        with workspace_lock(tmp_path, timeout=1):
            assert (tmp_path / ".lock").exists()
        assert (tmp_path / ".lock").exists()

    def test_reentrant(self, tmp_path):
        with workspace_lock(tmp_path, timeout=1):
            with workspace_lock(tmp_path, timeout=1):
                pass
            with workspace_lock(tmp_path, timeout=1):
                pass

    def test_released_after_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with workspace_lock(tmp_path, timeout=1):
                raise RuntimeError("boom")
        with workspace_lock(tmp_path, timeout=0.1):
            pass

    def test_times_out_when_held_elsewhere(self, tmp_path):
        lock_file = tmp_path / ".lock"
        with open(lock_file, "a+") as other:
            fcntl.flock(other, fcntl.LOCK_EX | fcntl.LOCK_NB)
            assert is_locked(tmp_path)
            with pytest.raises(LockTimeout) as exc:
                with workspace_lock(tmp_path, timeout=0.1):
                    pass
            assert exc.value.details["path"] == str(lock_file)
            fcntl.flock(other, fcntl.LOCK_UN)
        assert not is_locked(tmp_path)

    def test_disabled_is_noop(self, tmp_path):
        with workspace_lock(tmp_path / "missing", enabled=False):
            pass
        assert not (tmp_path / "missing").exists()

    def test_not_locked_without_file(self, tmp_path):
        assert not is_locked(tmp_path)
