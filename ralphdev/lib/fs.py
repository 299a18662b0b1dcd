"""
File-system capability used by every repository.

All writes go through write-temp-then-rename so a reader never sees a
partially written file. Transient OSErrors (EBUSY, EAGAIN, ...) are retried;
anything that still fails is raised as FileSystemError.
"""

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any

from ralphdev.lib import constants
from ralphdev.lib.errors import FileSystemError
from ralphdev.lib.retry import is_transient_os_error, with_retry

logger = logging.getLogger(__name__)


class FileSystem:
    """Local durable files with retry and atomic replace."""

    def __init__(self, max_attempts: int = constants.RETRY_MAX_ATTEMPTS,
                 initial_delay: float = constants.RETRY_INITIAL_DELAY,
                 max_delay: float = constants.RETRY_MAX_DELAY,
                 backoff_multiplier: float = constants.RETRY_BACKOFF_MULTIPLIER):
        self._retry = {
            "max_attempts": max_attempts,
            "initial_delay": initial_delay,
            "max_delay": max_delay,
            "backoff_multiplier": backoff_multiplier,
            "retry_on": (OSError,),
            "is_retryable": is_transient_os_error,
        }

    def _run(self, operation: str, path: Path, func):
        try:
            return with_retry(func, **self._retry)
        except OSError as e:
            raise FileSystemError(operation, path, e) from e

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def read_text(self, path: Path) -> str:
        path = Path(path)
        return self._run("read", path, lambda: path.read_text(encoding="utf-8"))

    def read_json(self, path: Path) -> Any:
        """Parse a JSON file. Decode errors propagate as json.JSONDecodeError."""
        return json.loads(self.read_text(path))

    def write_text(self, path: Path, content: str) -> None:
        """Atomically replace `path` with `content`."""
        path = Path(path)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
            try:
                with tmp_path.open("w", encoding="utf-8") as handle:
                    handle.write(content)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_path, path)
            finally:
                if tmp_path.exists():
                    tmp_path.unlink()

        self._run("write", path, _write)

    def write_json(self, path: Path, data: Any) -> None:
        self.write_text(path, json.dumps(data, indent=2) + "\n")

    def append_text(self, path: Path, content: str) -> None:
        path = Path(path)

        def _append():
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(content)

        self._run("append to", path, _append)

    def ensure_dir(self, path: Path) -> None:
        path = Path(path)
        self._run("create directory", path, lambda: path.mkdir(parents=True, exist_ok=True))

    def remove(self, path: Path) -> None:
        """Remove a file or directory tree. Missing paths are ignored."""
        path = Path(path)

        def _remove():
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()

        self._run("remove", path, _remove)

    def copy(self, src: Path, dest: Path) -> None:
        src, dest = Path(src), Path(dest)

        def _copy():
            dest.parent.mkdir(parents=True, exist_ok=True)
            if src.is_dir():
                shutil.copytree(src, dest, dirs_exist_ok=True)
            else:
                shutil.copy2(src, dest)

        self._run("copy", src, _copy)

    def glob(self, root: Path, pattern: str) -> list[Path]:
        root = Path(root)
        if not root.exists():
            return []
        return sorted(root.glob(pattern))
