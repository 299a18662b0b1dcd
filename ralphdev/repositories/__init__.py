"""File-backed repositories for tasks, the task index and phase state."""

from ralphdev.repositories.index import IndexRepository
from ralphdev.repositories.tasks import TaskFilter, TaskRepository
from ralphdev.repositories.state import StateRepository

__all__ = ["IndexRepository", "TaskFilter", "TaskRepository", "StateRepository"]
