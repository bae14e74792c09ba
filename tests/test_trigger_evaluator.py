"""Tests for TriggerEvaluator."""

import threading

import pytest

from pmcro.config.models import TriggerSeed, TriggersConfig
from pmcro.core import (
    EvolutionTrigger,
    SelfAssessment,
    TaskStatus,
    TriggerEvaluationError,
    TriggerType,
)
from pmcro.orchestrator import CYCLE_COMPLETED, CYCLE_FAILED, TriggerEvaluator
from pmcro.orchestrator.trigger_evaluator import EVOLUTION_TASK_KIND

QUALITY_TASKS = {
    "tasks": [
        {"name": "Review weak phases", "kind": "ANALYSIS", "priority": 9},
        {"name": "Tune planning", "priority": 3, "parameters": {"focus": "plan"}},
    ]
}


@pytest.fixture
def evaluator(store, clock):
    return TriggerEvaluator(store, TriggersConfig(), clock=clock)


def add_trigger(store, clock, trigger_type, name="trigger", **fields):
    return store.save_trigger(
        EvolutionTrigger(name=name, trigger_type=trigger_type, created_at=clock(), **fields)
    )


class TestQualityThreshold:
    """Test QUALITY_THRESHOLD triggers."""

    def test_cold_start_never_fires(self, evaluator, store, clock, completed_cycles):
        """Fewer completed cycles than required never fires."""
        cycles = completed_cycles([10.0] * 5)
        add_trigger(store, clock, TriggerType.QUALITY_THRESHOLD, actions=QUALITY_TASKS)

        assert evaluator.evaluate(cycles[-1]) == []

    def test_fires_below_threshold(self, evaluator, store, clock, completed_cycles):
        """Low average quality queues exactly the configured tasks."""
        cycles = completed_cycles([60.0] * 12)
        trigger = add_trigger(
            store, clock, TriggerType.QUALITY_THRESHOLD, actions=QUALITY_TASKS
        )

        tasks = evaluator.evaluate(cycles[-1])

        assert [t.name for t in tasks] == ["Review weak phases", "Tune planning"]
        assert store.get_trigger(trigger.id).trigger_count == 1
        assert all(t.status == TaskStatus.PENDING for t in tasks)
        assert all(store.get_task(t.id) is not None for t in tasks)
        assert tasks[0].parameters["source_cycle_id"] == cycles[-1].id
        assert tasks[1].parameters == {
            "focus": "plan",
            "trigger_id": trigger.id,
            "source_cycle_id": cycles[-1].id,
        }

    def test_fires_once_per_evaluation(self, evaluator, store, clock, completed_cycles):
        """Each evaluation fires at most once."""
        cycles = completed_cycles([60.0] * 12)
        trigger = add_trigger(
            store, clock, TriggerType.QUALITY_THRESHOLD, actions=QUALITY_TASKS
        )

        assert len(evaluator.evaluate(cycles[-1])) == 2
        assert len(evaluator.evaluate(cycles[-1])) == 2
        assert store.get_trigger(trigger.id).trigger_count == 2

    def test_above_threshold(self, evaluator, store, clock, completed_cycles):
        """Healthy quality does not fire."""
        cycles = completed_cycles([90.0] * 12)
        add_trigger(store, clock, TriggerType.QUALITY_THRESHOLD)

        assert evaluator.evaluate(cycles[-1]) == []

    def test_window_uses_most_recent(self, evaluator, store, clock, completed_cycles):
        """Only the newest window of cycles is averaged."""
        cycles = completed_cycles([10.0] * 5 + [95.0] * 3)
        add_trigger(
            store,
            clock,
            TriggerType.QUALITY_THRESHOLD,
            conditions={"window": 3, "min_cycles": 3, "threshold": 75},
        )

        assert evaluator.evaluate(cycles[-1]) == []

    def test_assessment_source(self, evaluator, store, clock, completed_cycles):
        """Assessments can be the quality source."""
        cycles = completed_cycles([95.0] * 3)
        store.save_assessment(SelfAssessment(timestamp=clock(), overall_score=40.0))
        add_trigger(
            store,
            clock,
            TriggerType.QUALITY_THRESHOLD,
            conditions={"min_cycles": 3, "source": "assessments"},
        )

        assert len(evaluator.evaluate(cycles[-1])) == 1

    def test_not_considered_without_cycle(self, evaluator, store, clock, completed_cycles):
        """The periodic sweep ignores quality triggers."""
        completed_cycles([60.0] * 12)
        add_trigger(store, clock, TriggerType.QUALITY_THRESHOLD)

        assert evaluator.evaluate() == []


class TestTimeBased:
    """Test TIME_BASED triggers."""

    def test_interval(self, evaluator, store, clock):
        """Fires immediately, then once the interval has passed."""
        trigger = add_trigger(store, clock, TriggerType.TIME_BASED)

        assert len(evaluator.evaluate()) == 1
        clock.advance(hours=23)
        assert evaluator.evaluate() == []
        clock.advance(hours=2)
        assert len(evaluator.evaluate()) == 1
        assert store.get_trigger(trigger.id).trigger_count == 2

    def test_per_trigger_interval(self, evaluator, store, clock):
        """conditions.interval overrides the default."""
        add_trigger(store, clock, TriggerType.TIME_BASED, conditions={"interval": "30m"})

        evaluator.evaluate()
        clock.advance(minutes=31)
        assert len(evaluator.evaluate()) == 1

    def test_not_considered_with_cycle(self, evaluator, store, clock, completed_cycles):
        """Cycle completion does not sweep time triggers."""
        cycle = completed_cycles([90.0])[0]
        add_trigger(store, clock, TriggerType.TIME_BASED)

        assert evaluator.evaluate(cycle, events=[CYCLE_COMPLETED]) == []

    def test_concurrent_sweeps_fire_once(self, evaluator, store, clock):
        """Racing sweeps share one firing."""
        trigger = add_trigger(store, clock, TriggerType.TIME_BASED)
        tasks = []
        lock = threading.Lock()

        def sweep():
            created = evaluator.evaluate()
            with lock:
                tasks.extend(created)

        threads = [threading.Thread(target=sweep) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(tasks) == 1
        assert store.get_trigger(trigger.id).trigger_count == 1


class TestEventDriven:
    """Test EVENT_DRIVEN triggers."""

    def test_unarmed_trigger_ignores_events(self, evaluator, store, clock, completed_cycles):
        """Events alone never fire a trigger that was never notified."""
        cycle = completed_cycles([90.0])[0]
        add_trigger(store, clock, TriggerType.EVENT_DRIVEN)

        assert evaluator.evaluate(cycle, events=[CYCLE_COMPLETED]) == []

    def test_notify_then_events(self, evaluator, store, clock, completed_cycles):
        """Notification fires; matching events fire it again."""
        cycle = completed_cycles([90.0])[0]
        trigger = add_trigger(
            store,
            clock,
            TriggerType.EVENT_DRIVEN,
            conditions={"event": CYCLE_FAILED},
        )

        assert len(evaluator.notify(trigger.id)) == 1
        assert evaluator.evaluate(cycle, events=[CYCLE_COMPLETED]) == []
        assert len(evaluator.evaluate(cycle, events=[CYCLE_FAILED])) == 1
        assert store.get_trigger(trigger.id).trigger_count == 2

    def test_notify_rejects_other_types(self, evaluator, store, clock):
        """Only event-driven triggers can be notified."""
        trigger = add_trigger(store, clock, TriggerType.TIME_BASED)

        with pytest.raises(TriggerEvaluationError, match="not event driven"):
            evaluator.notify(trigger.id)
        with pytest.raises(TriggerEvaluationError, match="not found"):
            evaluator.notify("missing")

    def test_notify_inactive(self, evaluator, store, clock):
        """Inactive triggers cannot be notified."""
        trigger = add_trigger(store, clock, TriggerType.EVENT_DRIVEN, is_active=False)

        with pytest.raises(TriggerEvaluationError, match="inactive"):
            evaluator.notify(trigger.id)


class TestTaskCreation:
    """Test tasks produced by firing triggers."""

    def test_default_evolution_task(self, evaluator, store, clock):
        """Without task actions a default evolution task is queued."""
        trigger = add_trigger(
            store,
            clock,
            TriggerType.TIME_BASED,
            name="Daily review",
            description="Look back",
            actions={"focus": "quality"},
        )

        [task] = evaluator.evaluate()

        assert task.name == "Evolution: Daily review"
        assert task.kind == EVOLUTION_TASK_KIND
        assert task.description == "Look back"
        assert task.priority == 9
        assert task.created_at == clock()
        assert task.parameters == {"focus": "quality", "trigger_id": trigger.id}

    def test_priority_floor(self, evaluator, store, clock):
        """Evolution tasks outrank routine work."""
        add_trigger(
            store,
            clock,
            TriggerType.TIME_BASED,
            actions={"tasks": [{"name": "Low", "priority": 1}]},
        )

        [task] = evaluator.evaluate()

        assert task.priority == TriggersConfig().default_task_priority + 1

    def test_malformed_actions_are_contained(self, evaluator, store, clock):
        """A broken trigger does not stop the others."""
        broken = add_trigger(
            store, clock, TriggerType.TIME_BASED, name="broken", actions={"tasks": "x"}
        )
        add_trigger(store, clock, TriggerType.TIME_BASED, name="healthy")

        tasks = evaluator.evaluate()

        assert [t.name for t in tasks] == ["Evolution: healthy"]
        assert store.get_trigger(broken.id).trigger_count == 0

    def test_malformed_actions_record_no_firing(self, evaluator, store, clock):
        """A trigger whose tasks cannot be built is never counted as fired."""
        broken = add_trigger(
            store, clock, TriggerType.TIME_BASED, name="broken", actions={"tasks": "x"}
        )

        evaluator.evaluate()
        clock.advance(hours=25)
        evaluator.evaluate()

        stored = store.get_trigger(broken.id)
        assert stored.trigger_count == 0
        assert stored.last_triggered_at is None
        assert store.list_tasks() == []

    def test_notify_with_malformed_actions(self, evaluator, store, clock):
        """Notification fails without counting a firing."""
        broken = add_trigger(
            store, clock, TriggerType.EVENT_DRIVEN, name="broken", actions={"tasks": [1]}
        )

        with pytest.raises(TriggerEvaluationError):
            evaluator.notify(broken.id)

        assert store.get_trigger(broken.id).trigger_count == 0

    def test_logs_activity(self, store, clock, activity_logger):
        """Firings and queued tasks reach the activity log."""
        evaluator = TriggerEvaluator(store, clock=clock, activity_logger=activity_logger)
        add_trigger(store, clock, TriggerType.TIME_BASED)

        evaluator.evaluate()

        types = [e.event_type for e in activity_logger.get_recent_events(10)]
        assert types == ["trigger_fired", "task_queued"]


class TestSeeding:
    """Test trigger seeding."""

    def test_seed_once(self, evaluator, store):
        """Seeds are created once by name."""
        seeds = [
            TriggerSeed(name="Quality", trigger_type=TriggerType.QUALITY_THRESHOLD),
            TriggerSeed(name="Daily", trigger_type=TriggerType.TIME_BASED),
        ]

        assert len(evaluator.seed(seeds)) == 2
        assert evaluator.seed(seeds) == []
        assert [t.name for t in store.list_triggers()] == ["Quality", "Daily"]
