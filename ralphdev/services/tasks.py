"""
Task service: lifecycle rules on top of the task repository.

Each public operation is load -> mutate -> persist. Mutations run under the
workspace lock; reads do not take it.

Batch operations (start/done/fail) are validated up front as a tagged union
of pydantic models, then applied in order. In atomic mode the record of every
touched task, the index and the phase state are captured before the first
operation and written back if any operation fails.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, ContextManager, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ralphdev.lib import constants
from ralphdev.lib.errors import DuplicateId, NotFound, RalphDevError, ValidationError
from ralphdev.lib.logs import ProgressLog
from ralphdev.lib.validate import validate
from ralphdev.repositories.state import StateRepository
from ralphdev.repositories.tasks import TaskFilter, TaskRepository
from ralphdev.workflow.task import Task, TaskStatus

logger = logging.getLogger(__name__)

SORT_KEYS = {
    "priority": lambda t: t.priority,
    "status": lambda t: t.status.value,
    "estimated_minutes": lambda t: t.estimated_minutes,
}


# Batch operation payloads

class _BatchOp(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    task_id: str = Field(alias="taskId", min_length=1)


class StartOp(_BatchOp):
    action: Literal["start"]


class DoneOp(_BatchOp):
    action: Literal["done"]
    duration: Optional[str] = None


class FailOp(_BatchOp):
    action: Literal["fail"]
    reason: str = Field(min_length=1, pattern=r"\S")


BatchOperation = Annotated[Union[StartOp, DoneOp, FailOp], Field(discriminator="action")]
_BATCH_ADAPTER = TypeAdapter(list[BatchOperation])


def parse_batch(operations: list[Any]) -> list[BatchOperation]:
    """Validate a whole batch before anything runs.

    Raises:
        ValidationError: any operation is malformed; nothing has been applied
    """
    try:
        return _BATCH_ADAPTER.validate_python(operations)
    except PydanticValidationError as e:
        first = e.errors()[0]
        path = ".".join(str(p) for p in first["loc"])
        raise ValidationError("batch", f"{first['msg']} ({e.error_count()} error(s))", path) from None


@dataclass
class OperationResult:
    task_id: str
    action: str
    success: bool
    error: Optional[dict[str, Any]] = None
    rolled_back: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = {"taskId": self.task_id, "action": self.action, "success": self.success}
        if self.error:
            data["error"] = self.error
        if self.rolled_back:
            data["rolledBack"] = True
        return data


@dataclass
class BatchResult:
    results: list[OperationResult]
    atomic: bool
    rolled_back: bool = False

    @property
    def succeeded(self) -> int:
        """Operations whose effects stand."""
        return sum(1 for r in self.results if r.success and not r.rolled_back)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> dict[str, Any]:
        return {
            "atomic": self.atomic,
            "rolledBack": self.rolled_back,
            "total": len(self.results),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class TaskListResult:
    tasks: list[Task]
    total: int
    offset: int
    limit: int
    returned: int = field(init=False)

    def __post_init__(self):
        self.returned = len(self.tasks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [t.to_dict() for t in self.tasks],
            "total": self.total,
            "returned": self.returned,
            "offset": self.offset,
            "limit": self.limit,
        }


@dataclass
class _BatchSnapshot:
    records: list
    index: Optional[str]
    state: Optional[str]


class TaskService:
    """Creation, listing, next-task selection, lifecycle and batches."""

    def __init__(self, tasks: TaskRepository, state: StateRepository, progress: ProgressLog,
                 lock: Callable[[], ContextManager] | None = None):
        self.tasks = tasks
        self.state = state
        self.progress = progress
        self._lock = lock or nullcontext

    def _require(self, task_id: str, operation: str) -> Task:
        task = self.tasks.find_by_id(task_id)
        if task is None:
            raise NotFound("Task", task_id, operation=operation)
        return task

    # Creation and queries

    def create_task(self, spec: dict[str, Any]) -> Task:
        """Create a pending task from plain input data (camelCase keys).

        Raises:
            ValidationError: input is malformed
            DuplicateId: a task with this id already exists
        """
        validate(spec, "task_input")
        test_requirements = spec.get("testRequirements")
        if spec.get("testPattern"):
            test_requirements = {"unit": {"required": True, "pattern": spec["testPattern"]}}

        task = Task(
            id=spec["id"],
            module=spec["module"],
            description=spec["description"].strip(),
            priority=spec.get("priority", constants.DEFAULT_PRIORITY),
            estimated_minutes=spec.get("estimatedMinutes", constants.DEFAULT_ESTIMATED_MINUTES),
            acceptance_criteria=[c.strip() for c in spec.get("acceptanceCriteria") or []],
            dependencies=list(spec.get("dependencies") or []),
            test_requirements=test_requirements,
        )
        task.validate()

        with self._lock():
            index = self.tasks.index.read()
            if self.tasks.exists(task.id, index):
                raise DuplicateId(task.id)
            self.tasks.save(task)

        unknown = [d for d in task.dependencies if not self.tasks.exists(d, index)]
        if unknown:
            logger.warning(f"[TASK] {task.id} depends on unknown task(s): {', '.join(unknown)}")
        logger.info(f"[TASK] created {task.id}")
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.find_by_id(task_id)

    def list_tasks(self, task_filter: TaskFilter | None = None, sort: str = "priority",
                   limit: int = constants.DEFAULT_LIST_LIMIT, offset: int = 0) -> TaskListResult:
        """Filter, sort (stable, so ties keep creation order) and paginate."""
        if sort not in SORT_KEYS:
            raise ValidationError("list", f"Unknown sort key '{sort}' (expected one of: {', '.join(SORT_KEYS)})",
                                  "sort")
        if limit < 0 or offset < 0:
            raise ValidationError("list", "limit and offset must be >= 0")

        tasks = sorted(self.tasks.find_all(task_filter), key=SORT_KEYS[sort])
        page = tasks[offset:offset + limit]
        return TaskListResult(tasks=page, total=len(tasks), offset=offset, limit=limit)

    def get_next_task(self) -> Optional[Task]:
        """Lowest-priority ready task, ties broken by creation order. None if nothing is ready."""
        ready = self.tasks.find_all(TaskFilter(ready=True))
        if not ready:
            logger.info("[TASK] no ready task")
            return None
        task = min(ready, key=lambda t: t.priority)
        logger.debug(f"[TASK] next: {task.id}")
        return task

    # Lifecycle

    def _set_current_task(self, task_id: Optional[str], only_if: Optional[str] = None) -> None:
        state = self.state.get()
        if state is None:
            return
        if only_if is not None and state.current_task != only_if:
            return
        state.set_current_task(task_id)
        self.state.save(state)

    def start_task(self, task_id: str) -> Task:
        """pending|failed -> in_progress. Already in_progress returns the task unchanged."""
        with self._lock():
            task = self._require(task_id, "start")
            if task.status == TaskStatus.IN_PROGRESS:
                logger.warning(f"[TASK] {task_id} already in progress")
                return task

            if task.has_dependencies():
                done = {t.id for t in self.tasks.find_all(TaskFilter(status=TaskStatus.COMPLETED))}
                if task.is_blocked(done):
                    logger.warning(f"[TASK] starting {task_id} before its dependencies are completed")

            task.start()
            self.tasks.save(task)
            self._set_current_task(task_id)

        self.progress.record("STARTED", task_id, task.description)
        logger.info(f"[TASK] started {task_id}")
        return task

    def complete_task(self, task_id: str, duration: str | None = None) -> Task:
        """in_progress -> completed. Already completed returns the task unchanged."""
        with self._lock():
            task = self._require(task_id, "done")
            if task.status == TaskStatus.COMPLETED:
                logger.warning(f"[TASK] {task_id} already completed")
                return task

            task.complete(duration)
            self.tasks.save(task)
            self._set_current_task(None, only_if=task_id)

        self.progress.record("COMPLETED", task_id, duration or "")
        logger.info(f"[TASK] completed {task_id}")
        return task

    def fail_task(self, task_id: str, reason: str) -> Task:
        """in_progress -> failed, recording the reason."""
        with self._lock():
            task = self._require(task_id, "fail")
            task.fail(reason)
            self.tasks.save(task)
            self._set_current_task(None, only_if=task_id)

        self.progress.record("FAILED", task_id, reason.strip())
        logger.info(f"[TASK] failed {task_id}: {reason.strip()}")
        return task

    def delete_task(self, task_id: str) -> None:
        with self._lock():
            if not self.tasks.delete(task_id):
                raise NotFound("Task", task_id, operation="delete")
            self._set_current_task(None, only_if=task_id)

    # Batches

    def _apply(self, op: BatchOperation) -> Task:
        if isinstance(op, StartOp):
            return self.start_task(op.task_id)
        if isinstance(op, DoneOp):
            return self.complete_task(op.task_id, op.duration)
        return self.fail_task(op.task_id, op.reason)

    def _take_snapshot(self, ops: list[BatchOperation]) -> _BatchSnapshot:
        task_ids = list(dict.fromkeys(op.task_id for op in ops))
        return _BatchSnapshot(
            records=[self.tasks.snapshot(tid) for tid in task_ids],
            index=self.tasks.index.snapshot(),
            state=self.state.snapshot(),
        )

    def _restore_snapshot(self, snapshot: _BatchSnapshot) -> None:
        for record in snapshot.records:
            self.tasks.restore(record)
        self.tasks.index.restore(snapshot.index)
        self.state.restore(snapshot.state)

    def batch_operations(self, operations: list[Any], atomic: bool = False) -> BatchResult:
        """Run start/done/fail operations in order.

        Non-atomic: every operation runs; failures are reported per operation.
        Atomic: the first failure stops the batch and everything already
        applied is rolled back.

        Raises:
            ValidationError: the batch itself is malformed (nothing applied)
        """
        ops = parse_batch(operations)
        result = BatchResult(results=[], atomic=atomic)
        logger.info(f"[TASK] batch of {len(ops)} operation(s), atomic={atomic}")

        with self._lock():
            snapshot = self._take_snapshot(ops) if atomic else None
            for op in ops:
                try:
                    self._apply(op)
                except RalphDevError as e:
                    result.results.append(OperationResult(op.task_id, op.action, False, e.to_dict()))
                    if atomic:
                        self._rollback(snapshot, result, failed=op)
                        break
                except Exception:
                    if atomic:
                        self._restore_snapshot(snapshot)
                    raise
                else:
                    result.results.append(OperationResult(op.task_id, op.action, True))

        return result

    def _rollback(self, snapshot: _BatchSnapshot, result: BatchResult, failed: BatchOperation) -> None:
        logger.warning(f"[TASK] batch failed at {failed.action} {failed.task_id}, rolling back")
        self._restore_snapshot(snapshot)
        result.rolled_back = True
        for r in result.results:
            if r.success:
                r.rolled_back = True
                self.progress.record("ROLLED_BACK", r.task_id, f"{r.action} undone, batch failed at {failed.task_id}")
