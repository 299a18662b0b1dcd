"""Phase-State entity and the workflow phase machine.

Usage:
    state = PhaseState.create_new()
    state.transition_to(Phase.BREAKDOWN)

Forward path:  clarify -> breakdown -> implement -> deliver -> complete
Healing loop:  implement -> heal -> implement

Healing never advances the workflow on its own: the only way out of heal is
back to implement. Moving to the phase you are already in is a no-op.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from transitions import Machine, MachineError

from ralphdev.lib import clock
from ralphdev.lib.errors import InvalidTransition, ValidationError

logger = logging.getLogger(__name__)


class Phase(Enum):
    CLARIFY = "clarify"
    BREAKDOWN = "breakdown"
    IMPLEMENT = "implement"
    HEAL = "heal"
    DELIVER = "deliver"
    COMPLETE = "complete"


def parse_phase(value: "str | Phase") -> Phase:
    if isinstance(value, Phase):
        return value
    for phase in Phase:
        if phase.value == value:
            return phase
    allowed = ", ".join(p.value for p in Phase)
    raise ValidationError("state", f"Unknown phase '{value}' (expected one of: {allowed})", "phase")


STATES = [p.value for p in Phase]

TRANSITIONS = [
    {"trigger": "clarified", "source": "clarify", "dest": "breakdown"},
    {"trigger": "planned", "source": "breakdown", "dest": "implement"},
    {"trigger": "start_healing", "source": "implement", "dest": "heal"},
    {"trigger": "healed", "source": "heal", "dest": "implement"},
    {"trigger": "implemented", "source": "implement", "dest": "deliver"},
    {"trigger": "delivered", "source": "deliver", "dest": "complete"},
]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """(source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        lookup.setdefault((t["source"], t["dest"]), t["trigger"])
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


def allowed_next(phase: Phase) -> list[Phase]:
    return [Phase(dest) for (source, dest) in TRIGGER_FOR if source == phase.value]


class PhaseMachine:
    """transitions.Machine over the workflow phases, seeded from a PhaseState."""

    def __init__(self, initial: Phase):
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial.value,
            auto_transitions=False,
        )

    def can(self, trigger: str) -> bool:
        return trigger in self.machine.get_triggers(self.state)


@dataclass
class PhaseState:
    """The singleton workflow progress record for a workspace."""
    phase: Phase
    started_at: str
    updated_at: str
    current_task: Optional[str] = None
    prd: Any = None
    errors: list[Any] = field(default_factory=list)

    def __post_init__(self):
        self.phase = parse_phase(self.phase)

    @classmethod
    def create_new(cls, phase: "Phase | str" = Phase.CLARIFY) -> "PhaseState":
        now = clock.now_iso()
        return cls(phase=parse_phase(phase), started_at=now, updated_at=now)

    def touch(self) -> None:
        self.updated_at = clock.now_iso()

    def can_transition_to(self, target: "Phase | str") -> bool:
        target = parse_phase(target)
        if target == self.phase:
            return True
        return (self.phase.value, target.value) in TRIGGER_FOR

    def next_allowed_phases(self) -> list[Phase]:
        return allowed_next(self.phase)

    def transition_to(self, target: "Phase | str") -> None:
        """Move to `target`, validating against the phase machine.

        Raises:
            InvalidTransition: target is not reachable from the current phase
        """
        target = parse_phase(target)
        if target == self.phase:
            logger.debug(f"[STATE] already in {target.value}, no-op")
            self.touch()
            return

        trigger = TRIGGER_FOR.get((self.phase.value, target.value))
        if trigger is None:
            raise InvalidTransition(
                self.phase.value, target.value, "state", operation="transition",
                allowed=[p.value for p in self.next_allowed_phases()],
            )

        machine = PhaseMachine(self.phase)
        try:
            machine.trigger(trigger)
        except MachineError:
            raise InvalidTransition(self.phase.value, target.value, "state", operation=trigger) from None

        logger.info(f"[STATE] {self.phase.value} -> {machine.state} ({trigger})")
        self.phase = Phase(machine.state)
        self.touch()

    def set_current_task(self, task_id: str | None) -> None:
        self.current_task = task_id or None
        self.touch()

    def set_prd(self, prd: Any) -> None:
        self.prd = prd
        self.touch()

    def add_error(self, error: Any) -> None:
        self.errors.append(error)
        self.touch()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "phase": self.phase.value,
            "startedAt": self.started_at,
            "updatedAt": self.updated_at,
            "errors": copy.deepcopy(self.errors),
        }
        if self.current_task is not None:
            data["currentTask"] = self.current_task
        if self.prd is not None:
            data["prd"] = copy.deepcopy(self.prd)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PhaseState":
        now = clock.now_iso()
        return cls(
            phase=data["phase"],
            started_at=data.get("startedAt") or now,
            updated_at=data.get("updatedAt") or now,
            current_task=data.get("currentTask"),
            prd=data.get("prd"),
            errors=list(data.get("errors") or []),
        )
