"""Durable store for cycles, tasks, evolution triggers and self assessments.

Records are stored as JSON files, one file per record, grouped by kind under
the state directory::

    <state_dir>/cycles/<id>.json
    <state_dir>/tasks/<id>.json
    <state_dir>/triggers/<id>.json
    <state_dir>/assessments/<id>.json

Every change is written atomically (temp file + rename) before the in-memory
copy is replaced, so a failed write leaves the previous state untouched.
Writes to one cycle are serialized by a per-cycle lock; distinct cycles never
wait on each other. Trigger counters use the same per-id discipline.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .cycle_state import (
    PHASE_ORDER,
    PHASE_STATUS,
    CycleStatus,
    Phase,
    TaskStatus,
    is_valid_task_transition,
    is_valid_transition,
    next_phase,
)
from .exceptions import InvalidTransitionError, PersistenceError
from .models import (
    Cycle,
    EvolutionTrigger,
    PhaseArtifact,
    SelfAssessment,
    Task,
    utc_now,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_KINDS = ("cycles", "tasks", "triggers", "assessments")


class CycleStateStore:
    """Sole durable state of the system."""

    def __init__(
        self,
        state_dir: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the store and load existing records.

        Args:
            state_dir: Directory for record files (default: .pmcro/state)
            clock: Time source, used for end/claim timestamps

        Raises:
            PersistenceError: If the state directory cannot be created
        """
        if state_dir is None:
            state_dir = Path.cwd() / ".pmcro" / "state"

        self.state_dir = Path(state_dir)
        self._clock = clock or utc_now
        self._ensure_state_dirs()

        self._guard = threading.RLock()
        self._task_lock = threading.Lock()
        self._cycle_locks: Dict[str, threading.Lock] = {}
        self._trigger_locks: Dict[str, threading.Lock] = {}

        self._cycles: Dict[str, Cycle] = self._load_all("cycles", Cycle)
        self._tasks: Dict[str, Task] = self._load_all("tasks", Task)
        self._triggers: Dict[str, EvolutionTrigger] = self._load_all(
            "triggers", EvolutionTrigger
        )
        self._assessments: Dict[str, SelfAssessment] = self._load_all(
            "assessments", SelfAssessment
        )

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def create_cycle(
        self,
        context: str,
        parent_id: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> Cycle:
        """
        Create and persist a new cycle in PLANNING.

        Args:
            context: Goal the cycle works on
            parent_id: Optional parent cycle (e.g. the failed attempt being retried)
            task_id: Optional task the cycle executes

        Returns:
            The new cycle

        Raises:
            PersistenceError: If the cycle cannot be written
        """
        cycle = Cycle(
            context=context,
            start_time=self._clock(),
            parent_cycle_id=parent_id,
            task_id=task_id,
        )
        self._write_record("cycles", cycle.id, cycle)
        with self._guard:
            self._cycles[cycle.id] = cycle
        return cycle.model_copy(deep=True)

    def record_phase(self, cycle_id: str, phase: Phase, artifact: PhaseArtifact) -> bool:
        """
        Record a phase artifact and advance the cycle status.

        Args:
            cycle_id: Cycle identifier
            phase: Phase being recorded
            artifact: Artifact produced by the phase

        Returns:
            True if recorded, False if the cycle does not exist

        Raises:
            InvalidTransitionError: If ``phase`` is not the immediate successor of
                the highest phase already recorded, or the cycle is terminal
            PersistenceError: If the change cannot be written
        """
        phase = Phase(phase)
        with self._cycle_lock(cycle_id):
            cycle = self._cycles.get(cycle_id)
            if cycle is None:
                return False

            if cycle.is_terminal:
                raise InvalidTransitionError(
                    f"Cannot record {phase.value} for cycle {cycle_id}: "
                    f"cycle is {cycle.status.value}"
                )

            expected = next_phase(cycle.last_recorded_phase)
            if phase != expected:
                last = cycle.last_recorded_phase
                raise InvalidTransitionError(
                    f"Invalid phase order for cycle {cycle_id}: "
                    f"{last.value if last else 'start'} -> {phase.value}. "
                    f"Expected: {expected.value if expected else 'completion'}"
                )

            if artifact.phase != phase:
                raise InvalidTransitionError(
                    f"Artifact for {artifact.phase.value} recorded as {phase.value} "
                    f"on cycle {cycle_id}"
                )

            artifacts = dict(cycle.phase_artifacts)
            artifacts[phase] = artifact
            following = next_phase(phase)
            status = PHASE_STATUS[following] if following else CycleStatus.OPTIMIZING

            updated = self._revalidate(
                cycle, phase_artifacts=artifacts, status=status
            )
            self._write_record("cycles", cycle_id, updated)
            self._cycles[cycle_id] = updated
            return True

    def complete_cycle(
        self, cycle_id: str, score: float, lessons: Optional[str] = None
    ) -> bool:
        """
        Mark a fully recorded cycle as COMPLETED.

        Args:
            cycle_id: Cycle identifier
            score: Success score in [0, 100]
            lessons: Lessons learned summary

        Returns:
            True if completed, False if the cycle does not exist

        Raises:
            ValueError: If score is outside [0, 100]
            InvalidTransitionError: If not all phases are recorded
            PersistenceError: If the change cannot be written
        """
        if not 0.0 <= score <= 100.0:
            raise ValueError(f"Success score must be within [0, 100], got {score}")

        with self._cycle_lock(cycle_id):
            cycle = self._cycles.get(cycle_id)
            if cycle is None:
                return False

            if not is_valid_transition(cycle.status, CycleStatus.COMPLETED) or len(
                cycle.phase_artifacts
            ) != len(PHASE_ORDER):
                raise InvalidTransitionError(
                    f"Cannot complete cycle {cycle_id} from {cycle.status.value} "
                    f"with {len(cycle.phase_artifacts)} recorded phase(s)"
                )

            updated = self._revalidate(
                cycle,
                status=CycleStatus.COMPLETED,
                end_time=self._clock(),
                success_score=score,
                lessons_learned=lessons,
            )
            self._write_record("cycles", cycle_id, updated)
            self._cycles[cycle_id] = updated
            return True

    def fail_cycle(self, cycle_id: str, error: str) -> bool:
        """
        Mark a cycle as FAILED.

        Args:
            cycle_id: Cycle identifier
            error: Error message

        Returns:
            True if failed, False if the cycle does not exist

        Raises:
            InvalidTransitionError: If the cycle is already terminal
            PersistenceError: If the change cannot be written
        """
        with self._cycle_lock(cycle_id):
            cycle = self._cycles.get(cycle_id)
            if cycle is None:
                return False

            if not is_valid_transition(cycle.status, CycleStatus.FAILED):
                raise InvalidTransitionError(
                    f"Cannot fail cycle {cycle_id}: cycle is {cycle.status.value}"
                )

            updated = self._revalidate(
                cycle,
                status=CycleStatus.FAILED,
                end_time=self._clock(),
                error_message=error,
                lessons_learned=f"Error: {error}",
            )
            self._write_record("cycles", cycle_id, updated)
            self._cycles[cycle_id] = updated
            return True

    def get_cycle(self, cycle_id: str) -> Optional[Cycle]:
        """Get a copy of a cycle, or None if it does not exist."""
        with self._guard:
            cycle = self._cycles.get(cycle_id)
            return cycle.model_copy(deep=True) if cycle else None

    def list_cycles(self) -> List[Cycle]:
        """All cycles, newest first."""
        with self._guard:
            cycles = [c.model_copy(deep=True) for c in self._cycles.values()]
        return sorted(cycles, key=lambda c: c.start_time, reverse=True)

    def get_active_cycles(self) -> List[Cycle]:
        """Cycles not yet COMPLETED or FAILED, oldest first."""
        with self._guard:
            cycles = [
                c.model_copy(deep=True)
                for c in self._cycles.values()
                if not c.is_terminal
            ]
        return sorted(cycles, key=lambda c: c.start_time)

    def get_recent_cycles(self, n: int) -> List[Cycle]:
        """The ``n`` most recently started cycles, newest first."""
        if n <= 0:
            return []
        return self.list_cycles()[:n]

    def get_completed_cycles(self, n: int) -> List[Cycle]:
        """The ``n`` most recently completed cycles, newest first."""
        if n <= 0:
            return []
        with self._guard:
            completed = [
                c.model_copy(deep=True)
                for c in self._cycles.values()
                if c.status == CycleStatus.COMPLETED
            ]
        completed.sort(key=lambda c: (c.end_time, c.start_time), reverse=True)
        return completed[:n]

    def get_cycle_metrics(self, cycle_id: str) -> Dict[str, Any]:
        """
        Summarize a cycle for reporting.

        Returns:
            Metrics dictionary, empty if the cycle does not exist
        """
        cycle = self.get_cycle(cycle_id)
        if cycle is None:
            return {}

        duration = cycle.duration_seconds
        return {
            "cycle_id": cycle.id,
            "status": cycle.status.value,
            "duration_minutes": duration / 60 if duration is not None else 0.0,
            "success_score": cycle.success_score,
            "lessons_learned": cycle.lessons_learned or "None",
            "phases": [p.value for p in cycle.recorded_phases],
            "used_fallback": cycle.used_fallback,
        }

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def save_task(self, task: Task) -> Task:
        """
        Insert or replace a task.

        Raises:
            PersistenceError: If the task cannot be written
        """
        with self._task_lock:
            self._write_record("tasks", task.id, task)
            self._tasks[task.id] = task.model_copy(deep=True)
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        """Get a copy of a task, or None if it does not exist."""
        with self._task_lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    def list_tasks(self, status: Optional[TaskStatus] = None) -> List[Task]:
        """Tasks ordered by priority (highest first), then age (oldest first)."""
        with self._task_lock:
            tasks = [
                t.model_copy(deep=True)
                for t in self._tasks.values()
                if status is None or t.status == status
            ]
        return sorted(tasks, key=lambda t: (-t.priority, t.created_at))

    def claim_next_tasks(self, limit: int) -> List[Task]:
        """
        Atomically move up to ``limit`` of the most urgent PENDING tasks to
        IN_PROGRESS.

        Returns:
            The claimed tasks
        """
        claimed: List[Task] = []
        if limit <= 0:
            return claimed

        with self._task_lock:
            pending = sorted(
                (t for t in self._tasks.values() if t.status == TaskStatus.PENDING),
                key=lambda t: (-t.priority, t.created_at),
            )
            for task in pending[:limit]:
                claimed.append(
                    self._transition_task_locked(
                        task.id,
                        TaskStatus.IN_PROGRESS,
                        started_at=self._clock(),
                        completed_at=None,
                        error_message=None,
                    )
                )
        return claimed

    def claim_task(self, task_id: str) -> Task:
        """
        Move one PENDING task to IN_PROGRESS.

        Raises:
            ValueError: If the task does not exist
            InvalidTransitionError: If the task is not PENDING
        """
        with self._task_lock:
            return self._transition_task_locked(
                task_id,
                TaskStatus.IN_PROGRESS,
                started_at=self._clock(),
                completed_at=None,
                error_message=None,
            )

    def bind_task_to_cycle(self, task_id: str, cycle_id: str) -> Task:
        """Record the cycle created to execute a task."""
        with self._task_lock:
            task = self._require_task(task_id)
            updated = self._revalidate(task, associated_cycle_id=cycle_id)
            self._write_record("tasks", task_id, updated)
            self._tasks[task_id] = updated
            return updated.model_copy(deep=True)

    def complete_task(
        self, task_id: str, result: Optional[Dict[str, Any]] = None
    ) -> Task:
        """Move an IN_PROGRESS task to COMPLETED."""
        with self._task_lock:
            return self._transition_task_locked(
                task_id,
                TaskStatus.COMPLETED,
                result=result or {},
                completed_at=self._clock(),
            )

    def fail_task(self, task_id: str, error: str) -> Task:
        """Move an IN_PROGRESS task to FAILED and count the attempt."""
        with self._task_lock:
            task = self._require_task(task_id)
            return self._transition_task_locked(
                task_id,
                TaskStatus.FAILED,
                error_message=error,
                completed_at=self._clock(),
                retry_count=task.retry_count + 1,
            )

    def requeue_task(self, task_id: str, max_retries: int) -> bool:
        """
        Return a FAILED task to PENDING while it has retries left.

        Each requeue lowers the priority by one (floor 1) so repeated failures
        do not starve other work.

        Returns:
            True if requeued, False if the retry budget is exhausted
        """
        with self._task_lock:
            task = self._require_task(task_id)
            if task.retry_count >= max_retries:
                return False

            self._transition_task_locked(
                task_id,
                TaskStatus.PENDING,
                priority=max(1, task.priority - 1),
                started_at=None,
                completed_at=None,
                error_message=None,
            )
            return True

    # ------------------------------------------------------------------
    # Evolution triggers
    # ------------------------------------------------------------------

    def save_trigger(self, trigger: EvolutionTrigger) -> EvolutionTrigger:
        """Insert or replace a trigger definition."""
        with self._trigger_lock(trigger.id):
            self._write_record("triggers", trigger.id, trigger)
            with self._guard:
                self._triggers[trigger.id] = trigger.model_copy(deep=True)
        return trigger

    def get_trigger(self, trigger_id: str) -> Optional[EvolutionTrigger]:
        """Get a copy of a trigger, or None if it does not exist."""
        with self._guard:
            trigger = self._triggers.get(trigger_id)
            return trigger.model_copy(deep=True) if trigger else None

    def find_trigger_by_name(self, name: str) -> Optional[EvolutionTrigger]:
        """Get the first trigger with the given name."""
        with self._guard:
            for trigger in self._triggers.values():
                if trigger.name == name:
                    return trigger.model_copy(deep=True)
        return None

    def list_triggers(self, active_only: bool = False) -> List[EvolutionTrigger]:
        """Triggers ordered by creation time."""
        with self._guard:
            triggers = [
                t.model_copy(deep=True)
                for t in self._triggers.values()
                if t.is_active or not active_only
            ]
        return sorted(triggers, key=lambda t: t.created_at)

    def deactivate_trigger(self, trigger_id: str) -> bool:
        """Stop evaluating a trigger. Returns False if it does not exist."""
        with self._trigger_lock(trigger_id):
            trigger = self._triggers.get(trigger_id)
            if trigger is None:
                return False
            updated = self._revalidate(trigger, is_active=False)
            self._write_record("triggers", trigger_id, updated)
            with self._guard:
                self._triggers[trigger_id] = updated
            return True

    def fire_trigger(
        self,
        trigger_id: str,
        predicate: Callable[[EvolutionTrigger], bool],
        now: datetime,
    ) -> Optional[EvolutionTrigger]:
        """
        Atomically check a trigger and record a firing.

        The predicate sees the latest stored copy while the per-trigger lock
        is held, so concurrent evaluations cannot both fire on the same
        condition or lose a counter increment.

        Args:
            trigger_id: Trigger identifier
            predicate: Condition evaluated against the current trigger state
            now: Firing timestamp

        Returns:
            The updated trigger if it fired, None otherwise
        """
        with self._trigger_lock(trigger_id):
            trigger = self._triggers.get(trigger_id)
            if trigger is None or not trigger.is_active:
                return None

            if not predicate(trigger.model_copy(deep=True)):
                return None

            updated = self._revalidate(
                trigger,
                trigger_count=trigger.trigger_count + 1,
                last_triggered_at=now,
            )
            self._write_record("triggers", trigger_id, updated)
            with self._guard:
                self._triggers[trigger_id] = updated
            return updated.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Self assessments
    # ------------------------------------------------------------------

    def save_assessment(self, assessment: SelfAssessment) -> SelfAssessment:
        """Persist a self assessment. Assessments are never modified."""
        with self._guard:
            if assessment.id in self._assessments:
                raise InvalidTransitionError(
                    f"Assessment {assessment.id} already recorded"
                )
            self._write_record("assessments", assessment.id, assessment)
            self._assessments[assessment.id] = assessment.model_copy(deep=True)
        return assessment

    def list_assessments(self, limit: Optional[int] = None) -> List[SelfAssessment]:
        """Assessments, newest first."""
        with self._guard:
            assessments = [a.model_copy(deep=True) for a in self._assessments.values()]
        assessments.sort(key=lambda a: a.timestamp, reverse=True)
        if limit is not None:
            return assessments[:limit]
        return assessments

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_state_dirs(self) -> None:
        """Ensure the state directory tree exists."""
        try:
            for kind in _KINDS:
                (self.state_dir / kind).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(
                f"Failed to create state directory {self.state_dir}: {e}"
            ) from e

    def _cycle_lock(self, cycle_id: str) -> threading.Lock:
        with self._guard:
            return self._cycle_locks.setdefault(cycle_id, threading.Lock())

    def _trigger_lock(self, trigger_id: str) -> threading.Lock:
        with self._guard:
            return self._trigger_locks.setdefault(trigger_id, threading.Lock())

    def _require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise ValueError(f"Task {task_id} not found")
        return task

    def _transition_task_locked(
        self, task_id: str, to_status: TaskStatus, **changes: Any
    ) -> Task:
        """Apply a validated task status change. Caller holds ``_task_lock``."""
        task = self._require_task(task_id)
        if not is_valid_task_transition(task.status, to_status):
            raise InvalidTransitionError(
                f"Invalid transition for task {task_id}: "
                f"{task.status.value} -> {to_status.value}"
            )

        updated = self._revalidate(task, status=to_status, **changes)
        self._write_record("tasks", task_id, updated)
        self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    @staticmethod
    def _revalidate(record: ModelT, **changes: Any) -> ModelT:
        """Build a validated copy of ``record`` with ``changes`` applied."""
        data = record.model_dump()
        data.update(changes)
        try:
            return type(record).model_validate(data)
        except ValidationError as e:
            raise InvalidTransitionError(
                f"Rejected change to {type(record).__name__}: {e}"
            ) from e

    def _record_path(self, kind: str, record_id: str) -> Path:
        """Get the file path for a record."""
        safe_id = record_id.replace("/", "_").replace("\\", "_")
        return self.state_dir / kind / f"{safe_id}.json"

    def _write_record(self, kind: str, record_id: str, record: BaseModel) -> None:
        """
        Write a record atomically.

        Raises:
            PersistenceError: If the write fails
        """
        record_file = self._record_path(kind, record_id)
        try:
            data = record.model_dump(mode="json")

            # Write atomically by writing to temp file first
            temp_file = record_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)

            # Rename to final location (atomic on POSIX systems)
            temp_file.replace(record_file)

        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(
                f"Failed to save {kind[:-1]} {record_id}: {e}"
            ) from e

    def _load_all(self, kind: str, model: Type[ModelT]) -> Dict[str, ModelT]:
        """Load every record of one kind, skipping unreadable files."""
        records: Dict[str, ModelT] = {}
        for record_file in sorted((self.state_dir / kind).glob("*.json")):
            try:
                with open(record_file, "r", encoding="utf-8") as f:
                    record = model.model_validate(json.load(f))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.warning("Skipping unreadable %s record %s: %s", kind, record_file, e)
                continue
            records[getattr(record, "id")] = record
        return records
