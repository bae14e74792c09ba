"""Phase order and cycle/task state definitions."""

from enum import Enum
from typing import Dict, List, Optional


class Phase(str, Enum):
    """The five PMCR-O phases, in canonical order."""

    PLAN = "plan"
    MAKE = "make"
    CHECK = "check"
    REFLECT = "reflect"
    OPTIMIZE = "optimize"


class CycleStatus(str, Enum):
    """Cycle lifecycle states."""

    PLANNING = "planning"
    MAKING = "making"
    CHECKING = "checking"
    REFLECTING = "reflecting"
    OPTIMIZING = "optimizing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


PHASE_ORDER: List[Phase] = [
    Phase.PLAN,
    Phase.MAKE,
    Phase.CHECK,
    Phase.REFLECT,
    Phase.OPTIMIZE,
]

PHASE_STATUS: Dict[Phase, CycleStatus] = {
    Phase.PLAN: CycleStatus.PLANNING,
    Phase.MAKE: CycleStatus.MAKING,
    Phase.CHECK: CycleStatus.CHECKING,
    Phase.REFLECT: CycleStatus.REFLECTING,
    Phase.OPTIMIZE: CycleStatus.OPTIMIZING,
}

STATUS_PHASE: Dict[CycleStatus, Phase] = {
    status: phase for phase, status in PHASE_STATUS.items()
}

# Valid cycle status transitions
VALID_TRANSITIONS: Dict[CycleStatus, List[CycleStatus]] = {
    CycleStatus.PLANNING: [CycleStatus.MAKING, CycleStatus.FAILED],
    CycleStatus.MAKING: [CycleStatus.CHECKING, CycleStatus.FAILED],
    CycleStatus.CHECKING: [CycleStatus.REFLECTING, CycleStatus.FAILED],
    CycleStatus.REFLECTING: [CycleStatus.OPTIMIZING, CycleStatus.FAILED],
    CycleStatus.OPTIMIZING: [CycleStatus.COMPLETED, CycleStatus.FAILED],
    CycleStatus.COMPLETED: [],  # Terminal state
    CycleStatus.FAILED: [],  # Terminal state
}

# Valid task status transitions; FAILED -> PENDING is the scheduler's requeue
VALID_TASK_TRANSITIONS: Dict[TaskStatus, List[TaskStatus]] = {
    TaskStatus.PENDING: [TaskStatus.IN_PROGRESS],
    TaskStatus.IN_PROGRESS: [TaskStatus.COMPLETED, TaskStatus.FAILED],
    TaskStatus.COMPLETED: [],
    TaskStatus.FAILED: [TaskStatus.PENDING],
}


def is_valid_transition(from_status: CycleStatus, to_status: CycleStatus) -> bool:
    """Check if a cycle status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def get_valid_next_states(current_status: CycleStatus) -> List[CycleStatus]:
    """Get list of valid next states for a given cycle status."""
    return VALID_TRANSITIONS.get(current_status, [])


def is_terminal_status(status: CycleStatus) -> bool:
    """Check if a cycle status is terminal (no further transitions allowed)."""
    return len(VALID_TRANSITIONS.get(status, [])) == 0


def is_valid_task_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """Check if a task status transition is valid."""
    return to_status in VALID_TASK_TRANSITIONS.get(from_status, [])


def next_phase(phase: Optional[Phase]) -> Optional[Phase]:
    """Return the phase that follows ``phase``.

    ``None`` stands for "nothing recorded yet", so ``next_phase(None)`` is
    ``Phase.PLAN``. Returns ``None`` after ``Phase.OPTIMIZE``.
    """
    if phase is None:
        return PHASE_ORDER[0]
    index = PHASE_ORDER.index(phase)
    if index + 1 < len(PHASE_ORDER):
        return PHASE_ORDER[index + 1]
    return None


def is_phase_prefix(phases: List[Phase]) -> bool:
    """Check that ``phases`` is a (possibly empty) prefix of the canonical order."""
    return list(phases) == PHASE_ORDER[: len(phases)]
