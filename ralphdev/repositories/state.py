"""Phase-State repository: the singleton .ralph-dev/state.json document."""

import json
import logging
from pathlib import Path
from typing import Optional

from ralphdev.lib import constants
from ralphdev.lib.errors import CorruptState, ValidationError
from ralphdev.lib.fs import FileSystem
from ralphdev.lib.validate import validate, validate_before_write
from ralphdev.workflow.phase import PhaseState

logger = logging.getLogger(__name__)


class StateRepository:
    """Load and atomically persist the workflow Phase-State."""

    def __init__(self, fs: FileSystem, state_dir: Path):
        self.fs = fs
        self.state_dir = Path(state_dir)
        self.path = self.state_dir / constants.STATE_FILE

    def exists(self) -> bool:
        return self.fs.exists(self.path)

    def get(self) -> Optional[PhaseState]:
        """Current state, or None when no state has been initialized.

        Raises:
            CorruptState: state.json exists but is not a valid state document
        """
        if not self.fs.exists(self.path):
            return None
        try:
            data = self.fs.read_json(self.path)
            validate(data, "state")
        except json.JSONDecodeError as e:
            raise CorruptState(f"State file is not valid JSON: {self.path}: {e}", {"path": str(self.path)}) from e
        except ValidationError as e:
            raise CorruptState(f"State file failed validation: {e.message}", {"path": str(self.path)}) from e
        return PhaseState.from_dict(data)

    def save(self, state: PhaseState) -> PhaseState:
        data = state.to_dict()
        validate_before_write(data, "state", self.path)
        self.fs.write_json(self.path, data)
        logger.debug(f"[STATE] saved phase={state.phase.value} task={state.current_task}")
        return state

    def clear(self) -> bool:
        """Delete state.json. False if there was nothing to delete."""
        if not self.fs.exists(self.path):
            return False
        self.fs.remove(self.path)
        return True

    # Raw snapshots, used by atomic batches

    def snapshot(self) -> Optional[str]:
        return self.fs.read_text(self.path) if self.fs.exists(self.path) else None

    def restore(self, content: Optional[str]) -> None:
        if content is None:
            self.fs.remove(self.path)
        else:
            self.fs.write_text(self.path, content)
