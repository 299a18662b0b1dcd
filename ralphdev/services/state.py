"""
State service: workflow phase management and session archiving.

    service.initialize_state()                    # clarify
    service.update_state({"phase": "breakdown"})
    service.archive_session()                     # only once phase is complete
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, ContextManager, Optional

from ralphdev.lib import clock, constants
from ralphdev.lib.errors import CorruptState, NotFound, ValidationError
from ralphdev.lib.fs import FileSystem
from ralphdev.lib.logs import release_debug_log
from ralphdev.repositories.state import StateRepository
from ralphdev.workflow.phase import Phase, PhaseState, parse_phase

logger = logging.getLogger(__name__)

# Phases in which a session may be archived without --force
ARCHIVABLE_PHASES = (Phase.COMPLETE.value, "none")

UPDATE_KEYS = {"phase", "currentTask", "prd", "addError"}

_UNSET = object()


@dataclass
class ArchiveResult:
    archived: bool
    archive_path: Optional[Path] = None
    files: list[str] = field(default_factory=list)
    blocked: bool = False
    blocked_reason: Optional[str] = None
    current_phase: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "archived": self.archived,
            "archivePath": str(self.archive_path) if self.archive_path else None,
            "files": list(self.files),
        }
        if self.blocked:
            data.update({
                "blocked": True,
                "blockedReason": self.blocked_reason,
                "currentPhase": self.current_phase,
            })
        return data


class StateService:
    """Phase-State operations plus archive of the whole session."""

    def __init__(self, repo: StateRepository, fs: FileSystem,
                 lock: Callable[[], ContextManager] | None = None):
        self.repo = repo
        self.fs = fs
        self.state_dir = repo.state_dir
        self._lock = lock or nullcontext

    def _require(self, operation: str) -> PhaseState:
        state = self.repo.get()
        if state is None:
            raise NotFound("State", operation=operation)
        return state

    def exists(self) -> bool:
        return self.repo.exists()

    def get_state(self) -> Optional[PhaseState]:
        return self.repo.get()

    def initialize_state(self, phase: "Phase | str" = Phase.CLARIFY) -> PhaseState:
        """Create state in `phase`. An existing state is returned untouched."""
        phase = parse_phase(phase)
        with self._lock():
            existing = self.repo.get()
            if existing is not None:
                logger.warning(f"[STATE] already initialized (phase={existing.phase.value}), leaving it as is")
                return existing
            state = self.repo.save(PhaseState.create_new(phase))
        logger.info(f"[STATE] initialized in {phase.value}")
        return state

    def set_state(self, phase: "Phase | str", current_task: Any = _UNSET, prd: Any = _UNSET,
                  errors: Any = _UNSET) -> PhaseState:
        """Force the phase (no transition check), keeping startedAt.

        currentTask, prd and errors are kept unless passed explicitly; pass
        errors=[] to clear the error list. Creates the state if none exists.
        """
        if errors is not _UNSET and not isinstance(errors, list):
            raise ValidationError("state", "errors must be a list", "errors")
        phase = parse_phase(phase)
        with self._lock():
            state = self.repo.get()
            if state is None:
                state = PhaseState.create_new(phase)
            else:
                if state.phase != phase:
                    logger.warning(f"[STATE] forcing phase {state.phase.value} -> {phase.value}")
                state.phase = phase
            if current_task is not _UNSET:
                state.current_task = current_task or None
            if prd is not _UNSET:
                state.set_prd(prd)
            if errors is not _UNSET:
                state.errors = list(errors)
            state.touch()
            return self.repo.save(state)

    def update_state(self, updates: dict[str, Any]) -> PhaseState:
        """Apply a partial update: phase (validated transition), currentTask, prd, addError.

        Raises:
            NotFound: no state has been initialized
            ValidationError: unknown keys
            InvalidTransition: the phase change is not allowed
        """
        unknown = set(updates) - UPDATE_KEYS
        if unknown:
            raise ValidationError("state", f"Unknown update field(s): {', '.join(sorted(unknown))}")
        if not updates:
            raise ValidationError("state", "No updates given")

        with self._lock():
            state = self._require("update")
            if "phase" in updates and updates["phase"] is not None:
                state.transition_to(updates["phase"])
            if "currentTask" in updates:
                state.set_current_task(updates["currentTask"])
            if "prd" in updates:
                state.set_prd(updates["prd"])
            if updates.get("addError") is not None:
                state.add_error(updates["addError"])
            state.touch()
            return self.repo.save(state)

    def set_current_task(self, task_id: Optional[str]) -> PhaseState:
        return self.update_state({"currentTask": task_id})

    def add_error(self, error: Any) -> PhaseState:
        return self.update_state({"addError": error})

    def clear_state(self) -> bool:
        with self._lock():
            cleared = self.repo.clear()
        if cleared:
            logger.info("[STATE] cleared")
        return cleared

    def archive_session(self, force: bool = False) -> ArchiveResult:
        """Move the session's files to .ralph-dev/archive/<timestamp>/.

        Blocked (not an error) unless the phase is complete or force is set.
        """
        with self._lock():
            present = [name for name in constants.ARCHIVE_ITEMS if self.fs.exists(self.state_dir / name)]
            if not present:
                logger.info("[STATE] nothing to archive")
                return ArchiveResult(archived=False)

            try:
                state = self.repo.get()
            except CorruptState:
                if not force:
                    raise
                logger.warning("[STATE] state.json is unreadable, archiving it anyway")
                state = None
            phase = state.phase.value if state else "none"
            if not force and phase not in ARCHIVABLE_PHASES:
                reason = f'Session is in "{phase}" phase. Use --force to archive an incomplete session.'
                logger.warning(f"[STATE] refusing to archive: {reason}")
                return ArchiveResult(archived=False, blocked=True, blocked_reason=reason, current_phase=phase)

            archive_dir = self.state_dir / constants.ARCHIVE_DIR_NAME / clock.archive_stamp()
            self.fs.ensure_dir(archive_dir)
            for name in present:
                self.fs.copy(self.state_dir / name, archive_dir / name)
                logger.debug(f"[STATE] archived {name}")
            # Remove only after everything is copied; our own debug.log handler
            # reopens a fresh file on its next record
            if constants.DEBUG_LOG in present:
                release_debug_log(self.state_dir)
            for name in present:
                self.fs.remove(self.state_dir / name)

        logger.info(f"[STATE] archived {len(present)} item(s) to {archive_dir}")
        return ArchiveResult(archived=True, archive_path=archive_dir, files=present)
