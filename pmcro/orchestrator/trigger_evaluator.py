"""Evolution trigger evaluation.

Triggers are standing rules stored in the state store. Evaluating a trigger
and recording its firing happen in one ``fire_trigger`` call, under the
store's per-trigger lock, so a periodic sweep racing an event-driven
evaluation cannot double fire or lose a counter increment. A trigger's tasks
are built before the firing is recorded, so a trigger whose actions cannot
be turned into tasks is never counted as fired.

Faults while evaluating one trigger are logged and skipped; they never
reach the caller.
"""

import logging
from datetime import datetime, timedelta
from statistics import mean
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from ..config.models import TriggerSeed, TriggersConfig, parse_duration
from ..core.exceptions import TriggerEvaluationError
from ..core.models import Cycle, EvolutionTrigger, Task, TriggerType, utc_now
from ..core.state_store import CycleStateStore
from ..tracking.activity_logger import ActivityLogger

logger = logging.getLogger(__name__)

CYCLE_COMPLETED = "cycle_completed"
CYCLE_FAILED = "cycle_failed"

EVOLUTION_TASK_KIND = "EVOLUTION"

# Trigger types considered with and without a cycle
CYCLE_TRIGGER_TYPES = (TriggerType.QUALITY_THRESHOLD, TriggerType.EVENT_DRIVEN)
SWEEP_TRIGGER_TYPES = (TriggerType.TIME_BASED,)


class TriggerEvaluator:
    """Decides whether evolution triggers fire and queues their tasks."""

    def __init__(
        self,
        store: CycleStateStore,
        config: Optional[TriggersConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        """Initialize trigger evaluator.

        Args:
            store: State store holding triggers, cycles and tasks
            config: Trigger defaults (thresholds, interval, priorities)
            clock: Time source
            activity_logger: Optional activity log
        """
        self.store = store
        self.config = config or TriggersConfig()
        self._clock = clock or utc_now
        self.activity_logger = activity_logger

    def seed(self, seeds: Iterable[TriggerSeed]) -> List[EvolutionTrigger]:
        """Create seeded triggers whose name is not yet in the store.

        Returns:
            The triggers created
        """
        created = []
        for seed in seeds:
            if self.store.find_trigger_by_name(seed.name) is not None:
                continue
            trigger = EvolutionTrigger(
                created_at=self._clock(), **seed.model_dump()
            )
            created.append(self.store.save_trigger(trigger))
            logger.info("Seeded trigger %s (%s)", trigger.name, trigger.trigger_type.value)
        return created

    def evaluate(
        self,
        cycle: Optional[Cycle] = None,
        events: Optional[Iterable[str]] = None,
    ) -> List[Task]:
        """Evaluate active triggers and queue the tasks of those that fire.

        With a cycle, QUALITY_THRESHOLD and EVENT_DRIVEN triggers are
        considered. Without one, TIME_BASED triggers are swept.

        Args:
            cycle: Cycle that just finished, if any
            events: Event signals raised by the caller

        Returns:
            Tasks created, already saved to the store
        """
        signals: Set[str] = set(events or [])
        kinds = CYCLE_TRIGGER_TYPES if cycle is not None else SWEEP_TRIGGER_TYPES
        now = self._clock()

        tasks: List[Task] = []
        for trigger in self.store.list_triggers(active_only=True):
            if trigger.trigger_type not in kinds:
                continue
            try:
                pending = self._build_tasks(trigger, cycle)
                predicate = self._predicate(trigger.trigger_type, now, signals)
                fired = self.store.fire_trigger(trigger.id, predicate, now)
                if fired is not None:
                    tasks.extend(self._on_fire(fired, cycle, pending))
            except Exception as e:
                logger.warning(
                    "Trigger %s (%s) could not be evaluated: %s",
                    trigger.name,
                    trigger.id,
                    e,
                )
                if self.activity_logger:
                    self.activity_logger.log_error(
                        f"Trigger evaluation failed: {e}",
                        cycle_id=cycle.id if cycle else None,
                        trigger_id=trigger.id,
                    )
        return tasks

    def notify(self, trigger_id: str, cycle: Optional[Cycle] = None) -> List[Task]:
        """Externally fire an EVENT_DRIVEN trigger.

        This is how an event-driven trigger fires for the first time; after
        that, matching event signals passed to ``evaluate`` fire it too.

        Returns:
            Tasks created

        Raises:
            TriggerEvaluationError: If the trigger does not exist, is inactive
                or is not event driven
        """
        trigger = self.store.get_trigger(trigger_id)
        if trigger is None:
            raise TriggerEvaluationError(f"Trigger {trigger_id} not found")
        if trigger.trigger_type != TriggerType.EVENT_DRIVEN:
            raise TriggerEvaluationError(
                f"Trigger {trigger.name} is {trigger.trigger_type.value}, not event driven"
            )

        pending = self._build_tasks(trigger, cycle)
        fired = self.store.fire_trigger(trigger_id, lambda t: True, self._clock())
        if fired is None:
            raise TriggerEvaluationError(f"Trigger {trigger.name} is inactive")
        return self._on_fire(fired, cycle, pending)

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def _predicate(
        self, trigger_type: TriggerType, now: datetime, signals: Set[str]
    ) -> Callable[[EvolutionTrigger], bool]:
        if trigger_type == TriggerType.QUALITY_THRESHOLD:
            return self._quality_below_threshold
        if trigger_type == TriggerType.TIME_BASED:
            return lambda trigger: self._interval_elapsed(trigger, now)
        return lambda trigger: self._event_signalled(trigger, signals)

    def _quality_below_threshold(self, trigger: EvolutionTrigger) -> bool:
        """Average recent quality is below the trigger's threshold."""
        conditions = trigger.conditions
        threshold = float(conditions.get("threshold", self.config.quality_threshold))
        window = int(conditions.get("window", self.config.quality_window))
        min_cycles = int(conditions.get("min_cycles", self.config.min_completed_cycles))
        source = conditions.get("source", "cycles")

        completed = self.store.get_completed_cycles(max(window, min_cycles))
        if len(completed) < min_cycles:
            return False

        if source == "assessments":
            scores = [a.overall_score for a in self.store.list_assessments(window)]
        elif source == "cycles":
            scores = [c.success_score for c in completed[:window] if c.success_score is not None]
        else:
            raise TriggerEvaluationError(f"Unknown quality source: {source}")

        if not scores:
            return False
        return mean(scores) < threshold

    def _interval_elapsed(self, trigger: EvolutionTrigger, now: datetime) -> bool:
        """Never fired, or the configured interval has passed since."""
        if trigger.last_triggered_at is None:
            return True
        interval = parse_duration(
            trigger.conditions.get("interval", self.config.time_interval)
        )
        return now - trigger.last_triggered_at >= timedelta(seconds=interval)

    @staticmethod
    def _event_signalled(trigger: EvolutionTrigger, signals: Set[str]) -> bool:
        """Armed by an earlier notification and its event was signalled."""
        if trigger.trigger_count <= 0 or not signals:
            return False
        event = trigger.conditions.get("event")
        return event is None or event in signals

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _on_fire(
        self, trigger: EvolutionTrigger, cycle: Optional[Cycle], pending: List[Task]
    ) -> List[Task]:
        """Save the tasks built for a firing that has been committed."""
        logger.info(
            "Trigger %s fired (count=%d)", trigger.name, trigger.trigger_count
        )
        if self.activity_logger:
            self.activity_logger.log_trigger_fired(
                trigger.id,
                trigger.name,
                trigger.trigger_count,
                cycle_id=cycle.id if cycle else None,
            )

        tasks = []
        for task in pending:
            self.store.save_task(task)
            tasks.append(task)
            if self.activity_logger:
                self.activity_logger.log_task_queued(task.id, task.name, task.priority)
        return tasks

    def _build_tasks(self, trigger: EvolutionTrigger, cycle: Optional[Cycle]) -> List[Task]:
        """One task per entry of ``actions["tasks"]``, or a default evolution task."""
        origin: Dict[str, Any] = {"trigger_id": trigger.id}
        if cycle is not None:
            origin["source_cycle_id"] = cycle.id

        specs = trigger.actions.get("tasks")
        if not specs:
            specs = [
                {
                    "name": f"Evolution: {trigger.name}",
                    "kind": EVOLUTION_TASK_KIND,
                    "description": trigger.description or "",
                    "parameters": dict(trigger.actions),
                }
            ]
        if not isinstance(specs, list):
            raise TriggerEvaluationError(
                f"Trigger {trigger.name} actions.tasks must be a list"
            )

        floor = self.config.default_task_priority + 1
        now = self._clock()
        tasks = []
        for spec in specs:
            if not isinstance(spec, dict):
                raise TriggerEvaluationError(
                    f"Trigger {trigger.name} has a task action that is not a mapping"
                )
            parameters = dict(spec.get("parameters") or {})
            parameters.update(origin)
            priority = int(spec.get("priority", self.config.evolution_task_priority))
            tasks.append(
                Task(
                    name=spec.get("name") or f"Evolution: {trigger.name}",
                    kind=spec.get("kind", EVOLUTION_TASK_KIND),
                    description=spec.get("description", ""),
                    priority=max(priority, floor),
                    parameters=parameters,
                    created_at=now,
                )
            )
        return tasks
