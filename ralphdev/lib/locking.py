"""
Advisory workspace lock.

Wraps a load-mutate-persist sequence in an flock on .ralph-dev/.lock so that
invocations launched in quick succession serialise instead of racing to
last-writer-wins. Reads never take the lock.

The lock is re-entrant within a process: a batch holding the lock can call
the single-task operations, which acquire it again without deadlocking.
"""

import atexit
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path

from ralphdev.lib import constants
from ralphdev.lib.errors import LockTimeout

POLL_INTERVAL = 0.05

# lock path -> (open fd, depth)
_held: dict[str, tuple] = {}


def _release(key: str) -> None:
    fd, _ = _held.pop(key, (None, 0))
    if fd is None:
        return
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        fd.close()


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    key = str(lock_file.resolve())
    if key in _held:
        fd, depth = _held[key]
        _held[key] = (fd, depth + 1)
        try:
            yield
        finally:
            fd, depth = _held[key]
            _held[key] = (fd, depth - 1)
        return

    lock_file.parent.mkdir(parents=True, exist_ok=True)
    # Lock files are never deleted: unlinking lets two processes hold
    # "exclusive" locks on different inodes with the same path.
    fd = open(lock_file, "a+")
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start > timeout:
                fd.close()
                raise LockTimeout(
                    f"Could not acquire {lock_name} within {timeout}s",
                    {"path": str(lock_file), "timeout": timeout},
                )
            time.sleep(POLL_INTERVAL)

    _held[key] = (fd, 1)
    cleanup = lambda: _release(key)  # noqa: E731
    atexit.register(cleanup)
    try:
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        atexit.unregister(cleanup)
        _release(key)


@contextmanager
def workspace_lock(state_dir: Path, timeout: float = constants.LOCK_TIMEOUT_SECONDS,
                   enabled: bool = True):
    """
    Hold the workspace lock for the duration of the block.

    Args:
        state_dir: The .ralph-dev directory
        timeout: Seconds to wait before raising LockTimeout
        enabled: False turns this into a no-op (config USE_LOCK=false)
    """
    if not enabled:
        yield
        return
    with _acquire_lock(Path(state_dir) / constants.LOCK_FILE, timeout, "workspace lock"):
        yield


def is_locked(state_dir: Path) -> bool:
    """True if another process currently holds the workspace lock."""
    lock_file = Path(state_dir) / constants.LOCK_FILE
    if not lock_file.exists():
        return False
    if str(lock_file.resolve()) in _held:
        return False
    with open(lock_file, "r") as fd:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        fcntl.flock(fd, fcntl.LOCK_UN)
    return False
