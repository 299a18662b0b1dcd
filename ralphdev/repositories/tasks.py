"""Task repository: authoritative per-task records plus index maintenance.

Records live at tasks/<module>/<name>.md. Every save writes the record first
and then the index entry, inside the same call, so the index never names a
task whose record has not been written yet. When the two disagree the record
wins:

- an index entry whose record is missing raises CorruptState
- a record with no index entry is still found and listed (with a warning)
  and rebuild_index() folds it back into the index
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from ralphdev.lib.errors import CorruptState
from ralphdev.lib.fs import FileSystem
from ralphdev.lib.records import parse_task, record_path, relative_record_path, render_task
from ralphdev.repositories.index import IndexRepository, default_index
from ralphdev.workflow.task import Task, TaskStatus, parse_status

logger = logging.getLogger(__name__)


@dataclass
class TaskFilter:
    """Criteria for TaskRepository.find_all(). None means "don't filter"."""
    status: Optional[TaskStatus] = None
    module: Optional[str] = None
    priority: Optional[int] = None
    has_dependencies: Optional[bool] = None
    ready: Optional[bool] = None

    def __post_init__(self):
        if self.status is not None:
            self.status = parse_status(self.status)


@dataclass
class RecordSnapshot:
    """Raw content of one record file, or None if it did not exist."""
    task_id: str
    path: Optional[Path]
    content: Optional[str]


def index_entry(task: Task) -> dict[str, Any]:
    return {
        "status": task.status.value,
        "priority": task.priority,
        "module": task.module,
        "description": task.description,
        "filePath": relative_record_path(task.module, task.id),
        "dependencies": list(task.dependencies),
        "estimatedMinutes": task.estimated_minutes,
    }


def completed_ids(tasks: list[Task]) -> set[str]:
    return {t.id for t in tasks if t.status == TaskStatus.COMPLETED}


def is_ready(task: Task, done: set[str]) -> bool:
    """Pending with every dependency completed. Unknown dependency ids never count as completed."""
    return task.status == TaskStatus.PENDING and not task.is_blocked(done)


class TaskRepository:
    """Reads and writes task records and keeps the index in step."""

    def __init__(self, fs: FileSystem, index: IndexRepository):
        self.fs = fs
        self.index = index
        self.tasks_dir = index.tasks_dir

    def path_for(self, task: Task) -> Path:
        return record_path(self.tasks_dir, task.module, task.id)

    def _load(self, path: Path) -> Task:
        return parse_task(self.fs.read_text(path), source=str(path))

    def _candidate_paths(self, task_id: str) -> list[Path]:
        """Every module/name split of a dotted id, longest module first."""
        parts = task_id.split(".")
        return [
            record_path(self.tasks_dir, ".".join(parts[:i]), task_id)
            for i in range(len(parts) - 1, 0, -1)
        ]

    def _find_unindexed(self, task_id: str) -> Optional[Task]:
        for path in self._candidate_paths(task_id):
            if self.fs.exists(path):
                task = self._load(path)
                if task.id == task_id:
                    logger.warning(f"[TASK] {task_id} has a record but no index entry; run 'index rebuild'")
                    return task
        return None

    def save(self, task: Task) -> Task:
        """Write the record, then upsert its index entry."""
        path = self.path_for(task)
        self.fs.write_text(path, render_task(task))

        index = self.index.read()
        index["tasks"][task.id] = index_entry(task)
        self.index.write(index)
        logger.debug(f"[TASK] saved {task.id} ({task.status.value})")
        return task

    def find_by_id(self, task_id: str, index: dict[str, Any] | None = None) -> Optional[Task]:
        """Load a task by id, or None when it does not exist.

        Pass `index` to reuse an index already read by the caller.

        Raises:
            CorruptState: the index names the task but its record is missing,
                unreadable, or belongs to a different id
        """
        if index is None:
            index = self.index.read()
        entry = index["tasks"].get(task_id)
        if entry is None:
            return self._find_unindexed(task_id)
        return self._load_indexed(task_id, self.index.entry_path(task_id, entry))

    def _load_indexed(self, task_id: str, path: Path) -> Task:
        if not self.fs.exists(path):
            raise CorruptState(
                f"Index entry for {task_id} points at a missing record: {path}",
                {"id": task_id, "path": str(path), "operation": "find"},
            )
        task = self._load(path)
        if task.id != task_id:
            raise CorruptState(
                f"Record {path} holds task {task.id}, expected {task_id}",
                {"id": task_id, "path": str(path), "operation": "find"},
            )
        return task

    def exists(self, task_id: str, index: dict[str, Any] | None = None) -> bool:
        """True if the index names the task or an unindexed record holds it."""
        if index is None:
            index = self.index.read()
        if task_id in index["tasks"]:
            return True
        try:
            return self._find_unindexed(task_id) is not None
        except CorruptState:
            return True

    def _all_tasks(self) -> list[Task]:
        """Every task in index order, then any unindexed records by path.

        The index is read once; each record is read once.
        """
        index = self.index.read()
        tasks: list[Task] = []
        seen_paths: set[Path] = set()
        for task_id, entry in index["tasks"].items():
            path = self.index.entry_path(task_id, entry)
            seen_paths.add(path)
            tasks.append(self._load_indexed(task_id, path))

        for path in self.fs.glob(self.tasks_dir, "*/*.md"):
            if path in seen_paths:
                continue
            task = self._load(path)
            if task.id in index["tasks"]:
                continue
            logger.warning(f"[TASK] {task.id} has a record but no index entry; run 'index rebuild'")
            tasks.append(task)
        return tasks

    def find_all(self, task_filter: TaskFilter | None = None) -> list[Task]:
        """All tasks matching `task_filter`, in creation (index) order."""
        tasks = self._all_tasks()
        if task_filter is None:
            return tasks

        f = task_filter
        done = completed_ids(tasks) if f.ready is not None else set()
        result = []
        for task in tasks:
            if f.status is not None and task.status != f.status:
                continue
            if f.module is not None and task.module != f.module:
                continue
            if f.priority is not None and task.priority != f.priority:
                continue
            if f.has_dependencies is not None and task.has_dependencies() != f.has_dependencies:
                continue
            if f.ready is not None and is_ready(task, done) != f.ready:
                continue
            result.append(task)
        return result

    def delete(self, task_id: str) -> bool:
        """Remove the record and its index entry. False if the task did not exist."""
        index = self.index.read()
        entry = index["tasks"].get(task_id)
        if entry is not None:
            path = self.index.entry_path(task_id, entry)
        else:
            task = self._find_unindexed(task_id)
            if task is None:
                return False
            path = self.path_for(task)

        self.fs.remove(path)
        if index["tasks"].pop(task_id, None) is not None:
            self.index.write(index)
        logger.info(f"[TASK] deleted {task_id}")
        return True

    # Atomic-batch support

    def snapshot(self, task_id: str) -> RecordSnapshot:
        entry_path = self.index.get_task_file_path(task_id)
        candidates = [entry_path] if entry_path else self._candidate_paths(task_id)
        for path in candidates:
            if self.fs.exists(path):
                return RecordSnapshot(task_id, path, self.fs.read_text(path))
        return RecordSnapshot(task_id, candidates[0] if candidates else None, None)

    def restore(self, snapshot: RecordSnapshot) -> None:
        if snapshot.path is None:
            return
        if snapshot.content is None:
            self.fs.remove(snapshot.path)
        else:
            self.fs.write_text(snapshot.path, snapshot.content)

    # Recovery

    def find_inconsistencies(self) -> list[dict[str, str]]:
        """Compare index against records. Returns one dict per problem found."""
        problems = []
        index = self.index.read()
        indexed_paths = set()
        for task_id, entry in index["tasks"].items():
            path = self.index.entry_path(task_id, entry)
            indexed_paths.add(path)
            if not self.fs.exists(path):
                problems.append({"id": task_id, "problem": "missing_record", "path": str(path)})
                continue
            try:
                task = self._load(path)
            except CorruptState as e:
                problems.append({"id": task_id, "problem": "unreadable_record", "path": str(path),
                                 "detail": e.message})
                continue
            if task.status.value != entry.get("status"):
                problems.append({"id": task_id, "problem": "status_mismatch", "path": str(path),
                                 "detail": f"index={entry.get('status')} record={task.status.value}"})

        for path in self.fs.glob(self.tasks_dir, "*/*.md"):
            if path not in indexed_paths:
                problems.append({"id": path.stem, "problem": "unindexed_record", "path": str(path)})
        return problems

    def rebuild_index(self) -> dict[str, Any]:
        """Regenerate the index from the records on disk.

        Metadata is kept when the old index is readable. Tasks already in the
        index keep their position (creation order); newly discovered records
        are appended by path. Unreadable records are skipped and reported.
        """
        try:
            index = self.index.read()
        except CorruptState as e:
            logger.warning(f"[INDEX] existing index unreadable, starting fresh: {e.message}")
            index = default_index()
        old_order = list(index["tasks"])

        found: dict[str, Task] = {}
        errors = []
        for path in self.fs.glob(self.tasks_dir, "*/*.md"):
            try:
                task = self._load(path)
            except CorruptState as e:
                errors.append({"path": str(path), "error": e.message})
                continue
            if path != self.path_for(task):
                errors.append({"path": str(path), "error": f"record for {task.id} is misplaced"})
                continue
            found[task.id] = task

        ordered = [tid for tid in old_order if tid in found]
        ordered += [tid for tid in found if tid not in ordered]

        index["tasks"] = {tid: index_entry(found[tid]) for tid in ordered}
        self.index.write(index)

        report = {
            "indexed": len(ordered),
            "added": [tid for tid in ordered if tid not in old_order],
            "removed": [tid for tid in old_order if tid not in found],
            "errors": errors,
        }
        logger.info(f"[INDEX] rebuilt: {report['indexed']} task(s), "
                    f"{len(report['added'])} added, {len(report['removed'])} removed")
        return report
