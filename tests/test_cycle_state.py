"""Tests for phase order and cycle/task state tables."""

from pmcro.core import (
    PHASE_ORDER,
    CycleStatus,
    Phase,
    TaskStatus,
    get_valid_next_states,
    is_terminal_status,
    is_valid_transition,
    next_phase,
)
from pmcro.core.cycle_state import is_phase_prefix, is_valid_task_transition


class TestCycleStatus:
    """Test cycle status transitions."""

    def test_forward_transitions(self):
        """Each non-terminal status moves only to the next phase status."""
        assert is_valid_transition(CycleStatus.PLANNING, CycleStatus.MAKING)
        assert is_valid_transition(CycleStatus.MAKING, CycleStatus.CHECKING)
        assert is_valid_transition(CycleStatus.CHECKING, CycleStatus.REFLECTING)
        assert is_valid_transition(CycleStatus.REFLECTING, CycleStatus.OPTIMIZING)
        assert is_valid_transition(CycleStatus.OPTIMIZING, CycleStatus.COMPLETED)

    def test_skipping_is_invalid(self):
        """Phases cannot be skipped or revisited."""
        assert not is_valid_transition(CycleStatus.PLANNING, CycleStatus.CHECKING)
        assert not is_valid_transition(CycleStatus.CHECKING, CycleStatus.MAKING)
        assert not is_valid_transition(CycleStatus.PLANNING, CycleStatus.COMPLETED)

    def test_any_active_status_can_fail(self):
        """Every non-terminal status may move to FAILED."""
        for status in CycleStatus:
            if not is_terminal_status(status):
                assert is_valid_transition(status, CycleStatus.FAILED)

    def test_terminal_states(self):
        """COMPLETED and FAILED have no way out."""
        assert is_terminal_status(CycleStatus.COMPLETED)
        assert is_terminal_status(CycleStatus.FAILED)
        assert get_valid_next_states(CycleStatus.COMPLETED) == []
        assert get_valid_next_states(CycleStatus.FAILED) == []
        assert not is_terminal_status(CycleStatus.OPTIMIZING)


class TestPhaseOrder:
    """Test canonical phase order helpers."""

    def test_next_phase(self):
        """next_phase walks the canonical order."""
        assert next_phase(None) == Phase.PLAN
        assert next_phase(Phase.PLAN) == Phase.MAKE
        assert next_phase(Phase.REFLECT) == Phase.OPTIMIZE
        assert next_phase(Phase.OPTIMIZE) is None

    def test_phase_prefix(self):
        """Only leading slices of the order are prefixes."""
        assert is_phase_prefix([])
        assert is_phase_prefix([Phase.PLAN, Phase.MAKE])
        assert is_phase_prefix(PHASE_ORDER)
        assert not is_phase_prefix([Phase.MAKE])
        assert not is_phase_prefix([Phase.PLAN, Phase.CHECK])


class TestTaskStatus:
    """Test task status transitions."""

    def test_attempt_lifecycle(self):
        """PENDING -> IN_PROGRESS -> COMPLETED or FAILED."""
        assert is_valid_task_transition(TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
        assert is_valid_task_transition(TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)
        assert is_valid_task_transition(TaskStatus.IN_PROGRESS, TaskStatus.FAILED)

    def test_requeue_only_from_failed(self):
        """Only FAILED tasks return to PENDING."""
        assert is_valid_task_transition(TaskStatus.FAILED, TaskStatus.PENDING)
        assert not is_valid_task_transition(TaskStatus.COMPLETED, TaskStatus.PENDING)
        assert not is_valid_task_transition(TaskStatus.PENDING, TaskStatus.COMPLETED)
