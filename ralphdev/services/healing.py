"""
Healing service: run repair attempts behind the persisted circuit breaker.

A repair is any zero-argument callable returning True (healed) or False
(ran but did not fix the problem). An exception or False counts as a breaker
failure; once the breaker opens, further attempts are refused without calling
the repair until the cooldown elapses.

Every attempt, and every breaker state change, is appended to
.ralph-dev/circuit-breaker.log.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, ContextManager, Optional

from ralphdev.lib import clock, constants
from ralphdev.lib.circuit_breaker import CircuitBreaker, CircuitState
from ralphdev.lib.errors import CircuitOpenError, FileSystemError
from ralphdev.lib.fs import FileSystem

logger = logging.getLogger(__name__)


class HealingDidNotFix(Exception):
    """The repair ran to completion but reported failure."""


@dataclass
class HealingResult:
    success: bool
    task_id: str
    attempt_number: int
    circuit_state: CircuitState
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "success": self.success,
            "taskId": self.task_id,
            "attemptNumber": self.attempt_number,
            "circuitState": self.circuit_state.value,
        }
        if self.error:
            data["error"] = self.error
        return data


class HealingService:
    def __init__(self, breaker: CircuitBreaker, fs: FileSystem, state_dir: Path,
                 lock: Callable[[], ContextManager] | None = None):
        self.breaker = breaker
        self.fs = fs
        self.log_path = Path(state_dir) / constants.CIRCUIT_BREAKER_LOG
        self._lock = lock or nullcontext

    def _log(self, line: str) -> None:
        try:
            self.fs.append_text(self.log_path, f"[{clock.now_iso()}] {line}\n")
        except FileSystemError as e:
            logger.warning(f"[CB] could not write {self.log_path.name}: {e.message}")

    def get_circuit_state(self) -> CircuitState:
        return self.breaker.state

    def attempt_healing(self, task_id: str, operation: Callable[[], bool]) -> HealingResult:
        """Run one repair attempt for `task_id`. Never raises for a failed repair."""
        with self._lock():
            before = self.breaker.state
            attempt = self.breaker.next_attempt(task_id)
            logger.info(f"[CB] healing {task_id}, attempt {attempt} (circuit {before.value})")

            def _run():
                if not operation():
                    raise HealingDidNotFix(f"healing reported failure for {task_id}")
                return True

            error = None
            try:
                self.breaker.execute(_run)
            except CircuitOpenError as e:
                error = f"{e.message}; retry after {e.retry_after_ms}ms"
                logger.warning(f"[CB] healing {task_id} refused: circuit open")
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error(f"[CB] healing {task_id} failed (attempt {attempt}): {error}")

            after = self.breaker.state
            outcome = "SUCCESS" if error is None else f"FAILED: {error}"
            self._log(f"{task_id} attempt {attempt} {outcome}")
            if after != before:
                self._log(f"Circuit state: {before.value} -> {after.value}")
                if after == CircuitState.OPEN:
                    logger.error(f"[CB] circuit opened after {self.breaker.failure_count} failure(s), healing paused")

        return HealingResult(
            success=error is None,
            task_id=task_id,
            attempt_number=attempt,
            circuit_state=after,
            error=error,
        )

    def reset_circuit(self) -> CircuitState:
        with self._lock():
            previous = self.breaker.reset()
        self._log(f"Circuit reset (was {previous.value})")
        return previous
