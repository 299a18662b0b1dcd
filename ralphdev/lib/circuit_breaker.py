"""
Circuit breaker bounding automatic repair attempts.

States:
    CLOSED     normal; consecutive failures are counted
    OPEN       fail fast; calls are rejected without running
    HALF_OPEN  cooldown elapsed; calls run as probes

CLOSED --(failure_threshold failures)--> OPEN --(timeout)--> HALF_OPEN
HALF_OPEN --(success_threshold successes)--> CLOSED
HALF_OPEN --(any failure)--> OPEN

Every process invocation is short-lived, so the breaker's counters live in
.ralph-dev/circuit-breaker.json (CircuitBreakerStore) and are reloaded on
construction and written back after every mutation.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, TypeVar

from ralphdev.lib import constants
from ralphdev.lib.errors import CircuitOpenError, CorruptState
from ralphdev.lib.fs import FileSystem
from ralphdev.lib.validate import validate_before_write

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class BreakerSnapshot:
    """Persisted breaker counters, in the on-disk key format."""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: int | None = None
    last_reset_time: int | None = None
    attempts_by_task: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failureCount": self.failure_count,
            "successCount": self.success_count,
            "lastFailureTime": self.last_failure_time,
            "lastResetTime": self.last_reset_time,
            "attemptsByTask": dict(self.attempts_by_task),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BreakerSnapshot":
        return cls(
            state=CircuitState(data.get("state", "CLOSED")),
            failure_count=int(data.get("failureCount") or 0),
            success_count=int(data.get("successCount") or 0),
            last_failure_time=data.get("lastFailureTime"),
            last_reset_time=data.get("lastResetTime"),
            attempts_by_task={str(k): int(v) for k, v in (data.get("attemptsByTask") or {}).items()},
        )


class CircuitBreakerStore:
    """Durable breaker state at .ralph-dev/circuit-breaker.json."""

    def __init__(self, fs: FileSystem, state_dir: Path):
        self.fs = fs
        self.path = Path(state_dir) / constants.CIRCUIT_BREAKER_FILE

    def load(self) -> BreakerSnapshot:
        if not self.fs.exists(self.path):
            return BreakerSnapshot()
        try:
            return BreakerSnapshot.from_dict(self.fs.read_json(self.path))
        except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
            raise CorruptState(
                f"Unreadable circuit breaker state: {self.path}: {e}",
                {"path": str(self.path)},
            ) from e

    def save(self, snapshot: BreakerSnapshot) -> None:
        data = snapshot.to_dict()
        validate_before_write(data, "circuit_breaker", self.path)
        self.fs.write_json(self.path, data)


class CircuitBreaker:
    """Gate a failure-prone operation behind a failure threshold.

    Without a store the breaker is purely in-memory; with one it survives
    across processes.
    """

    def __init__(
        self,
        failure_threshold: int = constants.CB_FAILURE_THRESHOLD,
        timeout_ms: int = constants.CB_TIMEOUT_MS,
        success_threshold: int = constants.CB_SUCCESS_THRESHOLD,
        store: CircuitBreakerStore | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        if failure_threshold < 1 or success_threshold < 1 or timeout_ms < 0:
            raise ValueError("thresholds must be >= 1 and timeout_ms >= 0")
        self.failure_threshold = failure_threshold
        self.timeout_ms = timeout_ms
        self.success_threshold = success_threshold
        self.store = store
        self.clock = clock
        self._snap = store.load() if store else BreakerSnapshot()

    @property
    def state(self) -> CircuitState:
        return self._snap.state

    @property
    def failure_count(self) -> int:
        return self._snap.failure_count

    @property
    def success_count(self) -> int:
        return self._snap.success_count

    def metrics(self) -> dict[str, Any]:
        data = self._snap.to_dict()
        data.pop("attemptsByTask")
        data.update({
            "failureThreshold": self.failure_threshold,
            "successThreshold": self.success_threshold,
            "timeoutMs": self.timeout_ms,
        })
        return data

    def _persist(self) -> None:
        if self.store:
            self.store.save(self._snap)

    def _set_state(self, new_state: CircuitState) -> None:
        if new_state != self._snap.state:
            logger.info(f"[CB] {self._snap.state.value} -> {new_state.value}")
            self._snap.state = new_state

    def _cooldown_elapsed(self) -> bool:
        if self._snap.last_failure_time is None:
            return True
        return self.clock() - self._snap.last_failure_time >= self.timeout_ms

    def allow_request(self) -> bool:
        """Check (and advance OPEN -> HALF_OPEN) whether a call may run now."""
        if self._snap.state != CircuitState.OPEN:
            return True
        if self._cooldown_elapsed():
            self._set_state(CircuitState.HALF_OPEN)
            self._snap.success_count = 0
            self._persist()
            return True
        return False

    def retry_after_ms(self) -> int:
        if self._snap.state != CircuitState.OPEN or self._snap.last_failure_time is None:
            return 0
        return max(0, self.timeout_ms - (self.clock() - self._snap.last_failure_time))

    def execute(self, operation: Callable[[], T]) -> T:
        """Run `operation` under breaker protection.

        Raises:
            CircuitOpenError: breaker is OPEN and the cooldown has not elapsed;
                `operation` is not called
            Whatever `operation` raises, after recording the failure
        """
        if not self.allow_request():
            raise CircuitOpenError(self._snap.failure_count, self.retry_after_ms())
        try:
            result = operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def record_success(self) -> CircuitState:
        snap = self._snap
        if snap.state == CircuitState.HALF_OPEN:
            snap.success_count += 1
            if snap.success_count >= self.success_threshold:
                self._set_state(CircuitState.CLOSED)
                snap.failure_count = 0
                snap.success_count = 0
        elif snap.state == CircuitState.CLOSED:
            snap.failure_count = 0
        self._persist()
        return snap.state

    def record_failure(self) -> CircuitState:
        snap = self._snap
        snap.failure_count += 1
        snap.last_failure_time = self.clock()
        if snap.state == CircuitState.HALF_OPEN:
            self._set_state(CircuitState.OPEN)
            snap.success_count = 0
        elif snap.state == CircuitState.CLOSED and snap.failure_count >= self.failure_threshold:
            self._set_state(CircuitState.OPEN)
        self._persist()
        return snap.state

    def reset(self) -> CircuitState:
        """Force CLOSED, keeping lastFailureTime for reference."""
        previous = self._snap.state
        self._set_state(CircuitState.CLOSED)
        self._snap.failure_count = 0
        self._snap.success_count = 0
        self._snap.last_reset_time = self.clock()
        self._snap.attempts_by_task = {}
        self._persist()
        return previous

    def next_attempt(self, task_id: str) -> int:
        """Bump and return the per-task attempt counter."""
        attempts = self._snap.attempts_by_task.get(task_id, 0) + 1
        self._snap.attempts_by_task[task_id] = attempts
        self._persist()
        return attempts

    def attempts_for(self, task_id: str) -> int:
        return self._snap.attempts_by_task.get(task_id, 0)
