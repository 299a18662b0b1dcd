"""Wires repositories and services for one workspace."""

import functools
from functools import cached_property

from ralphdev.lib.circuit_breaker import CircuitBreaker, CircuitBreakerStore
from ralphdev.lib.config import Config
from ralphdev.lib.fs import FileSystem
from ralphdev.lib.locking import workspace_lock
from ralphdev.lib.logs import ProgressLog
from ralphdev.repositories import IndexRepository, StateRepository, TaskRepository
from ralphdev.services.healing import HealingService
from ralphdev.services.state import StateService
from ralphdev.services.status import StatusService
from ralphdev.services.tasks import TaskService


def build_breaker(config: Config, fs: FileSystem, **overrides) -> CircuitBreaker:
    """Persisted breaker; non-None keyword overrides replace the configured thresholds."""
    settings = {
        "failure_threshold": config.cb_failure_threshold,
        "timeout_ms": config.cb_timeout_ms,
        "success_threshold": config.cb_success_threshold,
    }
    settings.update({k: v for k, v in overrides.items() if v is not None})
    return CircuitBreaker(store=CircuitBreakerStore(fs, config.state_dir), **settings)


class Context:
    """Services for one workspace.

    The breaker is loaded on first use, so a damaged circuit-breaker.json
    only affects the commands that need it.
    """

    def __init__(self, config: Config):
        self.config = config
        self.fs = FileSystem(
            max_attempts=config.retry_max_attempts,
            initial_delay=config.retry_initial_delay,
            max_delay=config.retry_max_delay,
            backoff_multiplier=config.retry_backoff_multiplier,
        )
        self.lock = functools.partial(workspace_lock, config.state_dir, config.lock_timeout, config.use_lock)

        self.index = IndexRepository(self.fs, config.tasks_dir)
        self.task_repo = TaskRepository(self.fs, self.index)
        self.state_repo = StateRepository(self.fs, config.state_dir)

        self.tasks = TaskService(self.task_repo, self.state_repo,
                                 ProgressLog(self.fs, config.state_dir), lock=self.lock)
        self.state = StateService(self.state_repo, self.fs, lock=self.lock)
        self.status = StatusService(self.task_repo, self.state_repo)

    @cached_property
    def breaker(self) -> CircuitBreaker:
        return build_breaker(self.config, self.fs)

    @cached_property
    def healing(self) -> HealingService:
        return HealingService(self.breaker, self.fs, self.config.state_dir, lock=self.lock)
