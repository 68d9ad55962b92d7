"""
Processing state machine for a production session.

Every change goes through an explicit transition table; anything else raises
StateTransitionError. Cycle-terminal states (complete, error) only return to
idle through acknowledge().
"""
from typing import Callable, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict

from .errors import QuotaExceededError, StateTransitionError
from .models import ProcessingState
from .session_log import SessionLog

S = ProcessingState

CYCLE_PHASES: FrozenSet[ProcessingState] = frozenset({S.FETCHING_SOURCE, S.GENERATING_SCRIPT, S.GENERATING_MEDIA})
READY_STATES: FrozenSet[ProcessingState] = frozenset({S.IDLE, S.COMPLETE, S.ERROR})

TRANSITIONS: Dict[ProcessingState, FrozenSet[ProcessingState]] = {
    S.IDLE: CYCLE_PHASES,
    S.FETCHING_SOURCE: frozenset({S.IDLE, S.ERROR}),
    S.GENERATING_SCRIPT: frozenset({S.IDLE, S.ERROR}),
    # idle is reached by media-only runs that do not upload
    S.GENERATING_MEDIA: frozenset({S.UPLOADING, S.IDLE, S.ERROR}),
    S.UPLOADING: frozenset({S.COMPLETE, S.ERROR}),
    S.COMPLETE: CYCLE_PHASES,
    S.ERROR: CYCLE_PHASES,
}


class MachineSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: ProcessingState
    quota_exceeded: bool = False
    error_message: str = ""


class StateMachine:
    def __init__(self, log: SessionLog):
        self.log = log
        self._snapshot = MachineSnapshot(state=S.IDLE)
        self.listeners: List[Callable[[MachineSnapshot], None]] = []

    @property
    def state(self) -> ProcessingState:
        return self._snapshot.state

    @property
    def snapshot(self) -> MachineSnapshot:
        return self._snapshot

    @property
    def is_busy(self) -> bool:
        return self.state not in READY_STATES

    def _publish(self, snapshot: MachineSnapshot):
        self._snapshot = snapshot
        for listener in self.listeners:
            listener(snapshot)

    def _move(self, target: ProcessingState, **fields):
        if target not in TRANSITIONS[self.state]:
            raise StateTransitionError(f"Cannot move from {self.state.value} to {target.value}")
        self.log.info(f"State {self.state.value} -> {target.value}")
        self._publish(self._snapshot.model_copy(update={"state": target, **fields}))

    def begin(self, phase: ProcessingState):
        """Enter a cycle phase. Overlapping cycles are rejected, not queued."""
        if phase not in CYCLE_PHASES:
            raise StateTransitionError(f"{phase.value} does not start a cycle")
        if self.is_busy:
            raise StateTransitionError(f"Cannot start {phase.value}: {self.state.value} is still running")
        self._move(phase, quota_exceeded=False, error_message="")

    def advance(self, target: ProcessingState):
        self._move(target)

    def fail(self, error: Exception, message: Optional[str] = None):
        self._move(
            S.ERROR,
            quota_exceeded=isinstance(error, QuotaExceededError),
            error_message=message or str(error),
        )

    def acknowledge(self):
        if self.state not in (S.COMPLETE, S.ERROR):
            raise StateTransitionError(f"Nothing to acknowledge in state {self.state.value}")
        self.log.info(f"Acknowledged {self.state.value}, returning to idle")
        self._publish(MachineSnapshot(state=S.IDLE))
