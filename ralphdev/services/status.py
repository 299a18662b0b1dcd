"""Project status: task counts overall and per module, plus the current phase."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ralphdev.repositories.state import StateRepository
from ralphdev.repositories.tasks import TaskRepository, completed_ids
from ralphdev.workflow.task import Task, TaskStatus

logger = logging.getLogger(__name__)


@dataclass
class ProgressStats:
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    # pending tasks waiting on an unfinished (or unknown) dependency
    blocked: int = 0
    completion_percentage: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "pending": self.pending,
            "inProgress": self.in_progress,
            "completed": self.completed,
            "failed": self.failed,
            "blocked": self.blocked,
            "completionPercentage": self.completion_percentage,
        }


def compute_stats(tasks: list[Task], done: set[str]) -> ProgressStats:
    stats = ProgressStats(total=len(tasks))
    for task in tasks:
        if task.status == TaskStatus.PENDING:
            stats.pending += 1
            if task.is_blocked(done):
                stats.blocked += 1
        elif task.status == TaskStatus.IN_PROGRESS:
            stats.in_progress += 1
        elif task.status == TaskStatus.COMPLETED:
            stats.completed += 1
        elif task.status == TaskStatus.FAILED:
            stats.failed += 1
    if stats.total:
        stats.completion_percentage = round(stats.completed / stats.total * 100)
    return stats


@dataclass
class ProjectStatus:
    overall: ProgressStats
    by_module: dict[str, ProgressStats]
    current_phase: str
    current_task: Optional[str]
    started_at: Optional[str]
    updated_at: Optional[str]
    has_active_tasks: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.to_dict(),
            "byModule": [{"module": m, **s.to_dict()} for m, s in self.by_module.items()],
            "currentPhase": self.current_phase,
            "currentTask": self.current_task,
            "startedAt": self.started_at,
            "updatedAt": self.updated_at,
            "hasActiveTasks": self.has_active_tasks,
        }


class StatusService:
    def __init__(self, tasks: TaskRepository, state: StateRepository):
        self.tasks = tasks
        self.state = state

    def get_project_status(self) -> ProjectStatus:
        tasks = self.tasks.find_all()
        state = self.state.get()
        done = completed_ids(tasks)

        modules: dict[str, list[Task]] = {}
        for task in tasks:
            modules.setdefault(task.module, []).append(task)

        status = ProjectStatus(
            overall=compute_stats(tasks, done),
            by_module={m: compute_stats(ts, done) for m, ts in modules.items()},
            current_phase=state.phase.value if state else "none",
            current_task=state.current_task if state else None,
            started_at=state.started_at if state else None,
            updated_at=state.updated_at if state else None,
            has_active_tasks=bool(tasks),
        )
        logger.debug(f"[STATUS] {status.overall.total} task(s), {status.overall.completion_percentage}% complete")
        return status
