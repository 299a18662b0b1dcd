"""
Logging setup and the human-readable progress log.

Diagnostics go through stdlib logging: a stderr handler for the operator and,
once a workspace exists, .ralph-dev/debug.log with everything at DEBUG.
Task lifecycle events are additionally appended to .ralph-dev/progress.log,
one line per event:

    [2024-05-01T12:30:45.000Z] STARTED: auth.login - Implement login endpoint
"""

import logging
import os
import sys
from pathlib import Path

from ralphdev.lib import clock, constants
from ralphdev.lib.errors import FileSystemError
from ralphdev.lib.fs import FileSystem

logger = logging.getLogger(__name__)

ROOT_LOGGER = "ralphdev"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(state_dir: Path | None = None, verbose: bool = False) -> logging.Logger:
    """Attach console (and debug.log) handlers to the package logger.

    Safe to call more than once; existing handlers are replaced.
    The debug log is only written when the .ralph-dev directory already
    exists, so read-only commands never create a workspace.
    """
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    if state_dir is not None and Path(state_dir).is_dir():
        file_handler = logging.FileHandler(Path(state_dir) / constants.DEBUG_LOG, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(file_handler)

    return root


def release_debug_log(state_dir: Path) -> int:
    """Close any open stream on state_dir/debug.log so the file can be moved.

    The handlers stay attached; a FileHandler whose stream is None reopens
    the file on its next record. Returns how many streams were closed.
    """
    target = os.path.abspath(Path(state_dir) / constants.DEBUG_LOG)
    released = 0
    for handler in logging.getLogger(ROOT_LOGGER).handlers:
        if not isinstance(handler, logging.FileHandler) or handler.baseFilename != target:
            continue
        handler.acquire()
        try:
            if handler.stream is not None:
                handler.flush()
                handler.stream.close()
                handler.stream = None
                released += 1
        finally:
            handler.release()
    return released


class ProgressLog:
    """Append-only lifecycle log. Write failures are logged, never raised."""

    def __init__(self, fs: FileSystem, state_dir: Path):
        self.fs = fs
        self.path = Path(state_dir) / constants.PROGRESS_LOG

    def record(self, event: str, task_id: str, details: str = "") -> None:
        line = f"[{clock.now_iso()}] {event}: {task_id}"
        if details:
            line += f" - {details}"
        try:
            self.fs.append_text(self.path, line + "\n")
        except FileSystemError as e:
            logger.warning(f"[TASK] could not write progress log: {e.message}")
