"""Task entity and its lifecycle state machine.

Lifecycle, driven by the transitions library:

    pending ----start----> in_progress ----complete----> completed
                    ^           |
                    |           +--------fail--------> failed
                    +------------------start-------------+

Every other move raises InvalidTransition naming the task, its current status
and the requested one. Nothing is ever silently ignored at this level;
idempotent repeats are a service-layer decision.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from transitions import Machine, MachineError

from ralphdev.lib import clock, constants
from ralphdev.lib.errors import InvalidTransition, ValidationError

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


def parse_status(value: "str | TaskStatus") -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in TaskStatus)
        raise ValidationError("task", f"Unknown status '{value}' (expected one of: {allowed})") from None


STATES = [s.value for s in TaskStatus]

TRANSITIONS = [
    {"trigger": "start", "source": ["pending", "failed"], "dest": "in_progress"},
    {"trigger": "complete", "source": "in_progress", "dest": "completed"},
    {"trigger": "fail", "source": "in_progress", "dest": "failed"},
]

# trigger -> status it leads to, for error messages
TARGET_FOR = {t["trigger"]: t["dest"] for t in TRANSITIONS}


class TaskLifecycle:
    """State machine bound to a single Task.

    Built on demand from the task's current status; after a transition the
    new status is written back onto the task.
    """

    def __init__(self, task: "Task"):
        self.task = task
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=task.status.value,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        self.task.status = TaskStatus(event.transition.dest)
        logger.debug(f"[TASK] {self.task.id}: {event.transition.source} -> {event.transition.dest}")

    def can(self, trigger: str) -> bool:
        return trigger in self.machine.get_triggers(self.state)


@dataclass
class Task:
    """One unit of trackable work."""
    id: str
    module: str
    description: str
    priority: int = constants.DEFAULT_PRIORITY
    status: TaskStatus = TaskStatus.PENDING
    estimated_minutes: int = constants.DEFAULT_ESTIMATED_MINUTES
    acceptance_criteria: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    test_requirements: Optional[dict[str, Any]] = None
    notes: str = ""
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None

    def __post_init__(self):
        self.status = parse_status(self.status)
        # Dependencies behave as an ordered set
        self.dependencies = list(dict.fromkeys(self.dependencies))

    def validate(self) -> None:
        """Check field-level invariants. Raises ValidationError."""
        if not constants.TASK_ID_PATTERN.match(self.id or ""):
            raise ValidationError("task", f"Invalid task id '{self.id}' (expected module.name)", "id")
        if not self.id.startswith(f"{self.module}."):
            raise ValidationError("task", f"Task id '{self.id}' must start with module '{self.module}.'", "id")
        if not self.description or not self.description.strip():
            raise ValidationError("task", "Description must not be empty", "description")
        if not isinstance(self.priority, int) or isinstance(self.priority, bool):
            raise ValidationError("task", f"Priority must be an integer, got {self.priority!r}", "priority")
        if not isinstance(self.estimated_minutes, int) or self.estimated_minutes < 1:
            raise ValidationError("task", f"estimatedMinutes must be a positive integer, got {self.estimated_minutes!r}",
                                  "estimatedMinutes")
        if self.id in self.dependencies:
            raise ValidationError("task", f"Task {self.id} cannot depend on itself", "dependencies")

    @property
    def name(self) -> str:
        """Id without the module prefix; used as the record file stem."""
        return self.id[len(self.module) + 1:] if self.id.startswith(f"{self.module}.") else self.id

    # Lifecycle

    def _fire(self, trigger: str) -> None:
        lifecycle = TaskLifecycle(self)
        try:
            lifecycle.trigger(trigger)
        except MachineError:
            raise self._invalid(trigger, lifecycle) from None

    def _invalid(self, trigger: str, lifecycle: TaskLifecycle) -> InvalidTransition:
        allowed = [t for t in TARGET_FOR if lifecycle.can(t)]
        return InvalidTransition(
            self.status.value, TARGET_FOR[trigger], self.id,
            operation=trigger, allowed=[TARGET_FOR[t] for t in allowed],
        )

    def can_start(self) -> bool:
        return self.status in (TaskStatus.PENDING, TaskStatus.FAILED)

    def start(self) -> None:
        """pending|failed -> in_progress."""
        self._fire("start")
        self.started_at = clock.now_iso()
        self.completed_at = None
        self.failed_at = None

    def complete(self, duration: str | None = None) -> None:
        """in_progress -> completed, noting the duration when given."""
        self._fire("complete")
        self.completed_at = clock.now_iso()
        if duration:
            self.append_note(f"Completed in {duration}")

    def fail(self, reason: str) -> None:
        """in_progress -> failed, recording the reason in notes.

        The transition is checked before the reason, so a task in the wrong
        status reports InvalidTransition whatever the reason.
        """
        lifecycle = TaskLifecycle(self)
        if not lifecycle.can("fail"):
            raise self._invalid("fail", lifecycle)
        if not reason or not reason.strip():
            raise ValidationError("task", "A reason is required to fail a task", "reason")
        self._fire("fail")
        self.failed_at = clock.now_iso()
        self.append_note(f"Failed: {reason.strip()}")

    def append_note(self, note: str) -> None:
        note = note.strip()
        if not note:
            return
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    # Queries

    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def has_dependencies(self) -> bool:
        return bool(self.dependencies)

    def is_blocked(self, completed_ids: set[str]) -> bool:
        """True if any dependency is not in `completed_ids` (unknown ids block)."""
        return any(dep not in completed_ids for dep in self.dependencies)

    def actual_duration(self) -> int | None:
        """Minutes from start to completion/failure, or None if unfinished."""
        started = clock.parse_iso(self.started_at)
        ended = clock.parse_iso(self.completed_at or self.failed_at)
        if not started or not ended:
            return None
        return round((ended - started).total_seconds() / 60)

    def is_over_estimate(self) -> bool:
        actual = self.actual_duration()
        return bool(actual) and actual > self.estimated_minutes

    # Serialization

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "module": self.module,
            "priority": self.priority,
            "status": self.status.value,
            "estimatedMinutes": self.estimated_minutes,
            "description": self.description,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "dependencies": list(self.dependencies),
            "testRequirements": self.test_requirements,
            "notes": self.notes,
        }
        for key, value in (("startedAt", self.started_at),
                           ("completedAt", self.completed_at),
                           ("failedAt", self.failed_at)):
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        estimated = data.get("estimatedMinutes")
        return cls(
            id=str(data["id"]),
            module=str(data["module"]),
            description=str(data.get("description") or ""),
            priority=data.get("priority", constants.DEFAULT_PRIORITY),
            status=data.get("status", TaskStatus.PENDING.value),
            estimated_minutes=constants.DEFAULT_ESTIMATED_MINUTES if estimated is None else estimated,
            acceptance_criteria=[str(c) for c in data.get("acceptanceCriteria") or []],
            dependencies=[str(d) for d in data.get("dependencies") or []],
            test_requirements=data.get("testRequirements"),
            notes=str(data.get("notes") or ""),
            started_at=data.get("startedAt"),
            completed_at=data.get("completedAt"),
            failed_at=data.get("failedAt"),
        )

    def copy(self) -> "Task":
        return Task.from_dict(self.to_dict())
