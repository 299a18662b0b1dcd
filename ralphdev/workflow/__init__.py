"""Domain entities and their lifecycle state machines."""

from ralphdev.workflow.task import Task, TaskStatus
from ralphdev.workflow.phase import Phase, PhaseState

__all__ = ["Task", "TaskStatus", "Phase", "PhaseState"]
