"""Tests for ralphdev.lib.retry and the retrying file system."""

import errno

import pytest

from ralphdev.lib.errors import FileSystemError
from ralphdev.lib.fs import FileSystem
from ralphdev.lib.retry import backoff_delay, is_transient_os_error, retrying, with_retry


class Flaky:
    """Fails `failures` times with `error`, then returns 'ok'."""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or RuntimeError("transient")
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestBackoff:

    def test_exponential_then_capped(self):
        delays = [backoff_delay(n, 0.1, 1.0, 2) for n in range(1, 7)]
        assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8, 1.0, 1.0])


class TestWithRetry:

    def test_success_on_first_attempt(self):
        sleeps = []
        assert with_retry(Flaky(0), sleep=sleeps.append) == "ok"
        assert sleeps == []

    def test_retries_until_success(self):
        sleeps = []
        op = Flaky(2)
        result = with_retry(op, max_attempts=3, initial_delay=0.1, max_delay=10,
                            backoff_multiplier=2, sleep=sleeps.append)
        assert result == "ok"
        assert op.calls == 3
        assert sleeps == pytest.approx([0.1, 0.2])

    def test_gives_up_with_last_error(self):
        sleeps = []
        op = Flaky(10)
        with pytest.raises(RuntimeError, match="transient"):
            with_retry(op, max_attempts=4, initial_delay=1, max_delay=3,
                       backoff_multiplier=2, sleep=sleeps.append)
        assert op.calls == 4
        assert sleeps == [1, 2, 3]

    def test_non_matching_type_not_retried(self):
        op = Flaky(1, KeyError("nope"))
        with pytest.raises(KeyError):
            with_retry(op, retry_on=(OSError,), sleep=lambda s: None)
        assert op.calls == 1

    def test_predicate_can_veto(self):
        op = Flaky(1, ValueError("permanent"))
        with pytest.raises(ValueError):
            with_retry(op, is_retryable=lambda e: "permanent" not in str(e), sleep=lambda s: None)
        assert op.calls == 1

    def test_single_attempt(self):
        op = Flaky(1)
        with pytest.raises(RuntimeError):
            with_retry(op, max_attempts=1, sleep=lambda s: None)
        assert op.calls == 1

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            with_retry(Flaky(0), max_attempts=0)

    def test_decorator(self):
        calls = []

        @retrying(max_attempts=3, initial_delay=0, sleep=lambda s: None)
        def add(a, b):
            calls.append((a, b))
            if len(calls) < 2:
                raise RuntimeError("again")
            return a + b

        assert add(2, 3) == 5
        assert calls == [(2, 3), (2, 3)]
        assert add.__name__ == "add"


class TestTransientOsErrors:

    @pytest.mark.parametrize("code", [errno.EBUSY, errno.EAGAIN, errno.ETIMEDOUT, errno.EINTR])
    def test_transient(self, code):
        assert is_transient_os_error(OSError(code, "x"))

    @pytest.mark.parametrize("exc", [OSError(errno.ENOENT, "x"), OSError(errno.EACCES, "x"), RuntimeError()])
    def test_not_transient(self, exc):
        assert not is_transient_os_error(exc)


class TestFileSystemRetry:

    def test_transient_read_retried(self, tmp_path, monkeypatch):
        path = tmp_path / "f.txt"
        path.write_text("hello")
        real_read = type(path).read_text
        calls = []

        def flaky_read(self, *args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise OSError(errno.EBUSY, "busy")
            return real_read(self, *args, **kwargs)

        monkeypatch.setattr(type(path), "read_text", flaky_read)
        fs = FileSystem(initial_delay=0, max_delay=0)
        assert fs.read_text(path) == "hello"
        assert len(calls) == 2

    def test_permanent_error_wrapped(self, tmp_path):
        fs = FileSystem(initial_delay=0, max_delay=0)
        with pytest.raises(FileSystemError) as exc:
            fs.read_text(tmp_path / "missing.txt")
        assert exc.value.details == {"operation": "read", "path": str(tmp_path / "missing.txt")}
        assert isinstance(exc.value.cause, FileNotFoundError)

    def test_write_is_atomic_and_creates_parents(self, tmp_path):
        fs = FileSystem()
        target = tmp_path / "a" / "b" / "doc.json"
        fs.write_json(target, {"k": 1})
        fs.write_json(target, {"k": 2})
        assert fs.read_json(target) == {"k": 2}
        assert [p.name for p in target.parent.iterdir()] == ["doc.json"]

    def test_remove_missing_is_noop(self, tmp_path):
        FileSystem().remove(tmp_path / "nothing")
