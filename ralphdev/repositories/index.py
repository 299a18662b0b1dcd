"""Index repository: the lightweight projection of every task plus workspace metadata.

Stored at .ralph-dev/tasks/index.json:

    {
      "version": "1.0.0",
      "updatedAt": "...",
      "metadata": {"projectGoal": "...", "languageConfig": {...}},
      "tasks": {"auth.login": {"status": ..., "priority": ..., "module": ...,
                               "description": ..., "filePath": "auth/login.md", ...}}
    }

The index is a cache. Per-task records are authoritative; TaskRepository keeps
the two in step and can rebuild this file from the records.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Optional

from ralphdev.lib import clock, constants
from ralphdev.lib.errors import CorruptState, NotFound, ValidationError
from ralphdev.lib.fs import FileSystem
from ralphdev.lib.validate import validate, validate_before_write

logger = logging.getLogger(__name__)


def default_index() -> dict[str, Any]:
    return {
        "version": constants.INDEX_VERSION,
        "updatedAt": clock.now_iso(),
        "metadata": {"projectGoal": ""},
        "tasks": {},
    }


class IndexRepository:
    """Reads and atomically replaces index.json."""

    def __init__(self, fs: FileSystem, tasks_dir: Path):
        self.fs = fs
        self.tasks_dir = Path(tasks_dir)
        self.path = self.tasks_dir / constants.INDEX_FILE

    def exists(self) -> bool:
        return self.fs.exists(self.path)

    def read(self) -> dict[str, Any]:
        """Load the index; a missing file yields a fresh default index (not written)."""
        if not self.fs.exists(self.path):
            return default_index()
        try:
            data = self.fs.read_json(self.path)
        except json.JSONDecodeError as e:
            raise CorruptState(f"Index is not valid JSON: {self.path}: {e}", {"path": str(self.path)}) from e
        try:
            validate(data, "index")
        except ValidationError as e:
            raise CorruptState(f"Index failed validation: {e.message}", {"path": str(self.path)}) from e
        return data

    def write(self, index: dict[str, Any]) -> None:
        """Atomically replace the index, refreshing updatedAt."""
        index["updatedAt"] = clock.now_iso()
        validate_before_write(index, "index", self.path)
        self.fs.write_json(self.path, index)
        logger.debug(f"[INDEX] wrote {len(index['tasks'])} task(s)")

    # Raw snapshots, used by atomic batches

    def snapshot(self) -> Optional[str]:
        return self.fs.read_text(self.path) if self.fs.exists(self.path) else None

    def restore(self, content: Optional[str]) -> None:
        if content is None:
            self.fs.remove(self.path)
        else:
            self.fs.write_text(self.path, content)

    # Entry helpers

    def upsert_task(self, task_id: str, entry: dict[str, Any]) -> None:
        index = self.read()
        index["tasks"][task_id] = entry
        self.write(index)

    def remove_task(self, task_id: str) -> bool:
        index = self.read()
        if index["tasks"].pop(task_id, None) is None:
            return False
        self.write(index)
        return True

    def update_task_status(self, task_id: str, status: str) -> None:
        index = self.read()
        if task_id not in index["tasks"]:
            raise NotFound("Task", task_id, operation="update index status")
        index["tasks"][task_id]["status"] = status
        self.write(index)

    def get_entry(self, task_id: str) -> Optional[dict[str, Any]]:
        entry = self.read()["tasks"].get(task_id)
        return copy.deepcopy(entry) if entry is not None else None

    def has_task(self, task_id: str) -> bool:
        return task_id in self.read()["tasks"]

    def get_all_task_ids(self) -> list[str]:
        return list(self.read()["tasks"])

    def get_tasks_by_status(self, status: str) -> list[str]:
        return [tid for tid, e in self.read()["tasks"].items() if e.get("status") == status]

    def get_task_file_path(self, task_id: str) -> Optional[Path]:
        entry = self.read()["tasks"].get(task_id)
        if entry is None:
            return None
        return self.entry_path(task_id, entry)

    def entry_path(self, task_id: str, entry: dict[str, Any]) -> Path:
        """Record path for an entry of an index that has already been read."""
        if entry.get("filePath"):
            return self.tasks_dir / entry["filePath"]
        module = entry["module"]
        name = task_id[len(module) + 1:] if task_id.startswith(f"{module}.") else task_id
        return self.tasks_dir / module / f"{name}.md"

    # Metadata

    def get_metadata(self) -> dict[str, Any]:
        return copy.deepcopy(self.read()["metadata"])

    def update_metadata(self, updates: dict[str, Any]) -> dict[str, Any]:
        """Shallow-merge `updates` into metadata; unrelated keys are kept."""
        index = self.read()
        index["metadata"] = {**index["metadata"], **updates}
        self.write(index)
        return copy.deepcopy(index["metadata"])
