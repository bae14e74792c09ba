"""Cycle orchestrator: drives one cycle through all five phases.

Each phase artifact is durably recorded before the next phase starts. Any
structural failure (invalid transition, persistence failure, timeout,
cancellation, unexpected phase error) fails the cycle; ``run_full_cycle``
reports every outcome as an ``ExecutionResult`` and never raises.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config.models import PMCROConfig
from ..core.capabilities import (
    CapabilityProvider,
    CommandCapabilityProvider,
    NullCapabilityProvider,
)
from ..core.cycle_state import PHASE_ORDER, Phase
from ..core.exceptions import (
    CycleCancelledError,
    PersistenceError,
    PhaseTimeoutError,
    PMCROError,
)
from ..core.models import Cycle, ExecutionResult, PhaseArtifact, Task
from ..core.prediction import PredictionService
from ..core.state_store import CycleStateStore
from ..tracking.activity_logger import ActivityLogger
from .phase_executor import CycleContext, PhaseExecutor
from .quality_scorer import QualityScorer
from .trigger_evaluator import CYCLE_COMPLETED, CYCLE_FAILED, TriggerEvaluator

logger = logging.getLogger(__name__)


class CycleOrchestrator:
    """Top-level state machine driving one cycle end-to-end."""

    def __init__(
        self,
        store: CycleStateStore,
        phase_executor: Optional[PhaseExecutor] = None,
        scorer: Optional[QualityScorer] = None,
        trigger_evaluator: Optional[TriggerEvaluator] = None,
        config: Optional[PMCROConfig] = None,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        """Initialize cycle orchestrator.

        Args:
            store: State store for cycles and tasks
            phase_executor: Phase executor (no capability provider if None)
            scorer: Quality scorer (weighted default if None)
            trigger_evaluator: Trigger evaluator (default triggers config if None)
            config: Configuration for timeouts and history size
            activity_logger: Optional activity log
        """
        self.store = store
        self.config = config or PMCROConfig()
        self.phase_executor = phase_executor or PhaseExecutor()
        self.scorer = scorer or QualityScorer()
        self.trigger_evaluator = trigger_evaluator or TriggerEvaluator(
            store, self.config.triggers, activity_logger=activity_logger
        )
        self.activity_logger = activity_logger
        self._stop_event = threading.Event()

    @classmethod
    def from_config(
        cls,
        config: PMCROConfig,
        store: Optional[CycleStateStore] = None,
        capability_provider: Optional[CapabilityProvider] = None,
        prediction_service: Optional[PredictionService] = None,
        activity_logger: Optional[ActivityLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "CycleOrchestrator":
        """Wire an orchestrator and its collaborators from configuration.

        Seeds configured triggers into the store.
        """
        store = store or CycleStateStore(config.get_state_dir(), clock=clock)
        if capability_provider is None:
            capability_provider = build_capability_provider(config)

        evaluator = TriggerEvaluator(
            store, config.triggers, clock=clock, activity_logger=activity_logger
        )
        evaluator.seed(config.triggers.seeds)

        return cls(
            store,
            phase_executor=PhaseExecutor(capability_provider, prediction_service),
            scorer=QualityScorer.from_config(config, prediction_service, clock=clock),
            trigger_evaluator=evaluator,
            config=config,
            activity_logger=activity_logger,
        )

    @property
    def stopping(self) -> bool:
        """Check if a shutdown was requested."""
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request cooperative shutdown.

        The phase in flight finishes (or times out); the cycle is then failed
        explicitly instead of starting its next phase.
        """
        self._stop_event.set()

    def resume(self) -> None:
        """Clear a previous shutdown request."""
        self._stop_event.clear()

    def run_full_cycle(
        self,
        context: str,
        parent_id: Optional[str] = None,
        *,
        parameters: Optional[Dict[str, Any]] = None,
        task: Optional[Task] = None,
        events: Optional[Iterable[str]] = None,
    ) -> ExecutionResult:
        """Run one cycle through Plan, Make, Check, Reflect and Optimize.

        Args:
            context: Free-text goal
            parent_id: Parent cycle (e.g. the failed attempt being retried)
            parameters: Initial task parameters handed to the phases
            task: Task being executed; bound to the new cycle
            events: Extra event signals for trigger evaluation

        Returns:
            ExecutionResult describing the outcome
        """
        start_time = time.time()
        signals: List[str] = list(events or [])

        try:
            cycle = self.store.create_cycle(
                context, parent_id=parent_id, task_id=task.id if task else None
            )
        except PMCROError as e:
            logger.error("Could not create cycle for '%s': %s", context, e)
            return ExecutionResult(
                cycle_id=None,
                success=False,
                error_message=f"Failed to create cycle: {e}",
                duration_seconds=time.time() - start_time,
            )

        logger.info("Cycle %s started: %s", cycle.id, context)
        if self.activity_logger:
            self.activity_logger.log_cycle_start(
                cycle.id, context, task_id=task.id if task else None
            )

        if parameters is None:
            parameters = task.parameters if task else {}
        cycle_context = CycleContext(
            cycle_id=cycle.id,
            goal=context,
            parameters=dict(parameters),
        )

        try:
            if task is not None:
                self.store.bind_task_to_cycle(task.id, cycle.id)
            cycle_context.recent_cycles = self.store.get_completed_cycles(
                self.config.orchestrator.reflect_history
            )

            for phase in PHASE_ORDER:
                if self._stop_event.is_set():
                    raise CycleCancelledError(
                        f"Cycle {cycle.id} cancelled before {phase.value} phase"
                    )
                artifact = self._run_phase(phase, cycle_context)
                self._record(cycle.id, phase, artifact)
                cycle_context.artifacts.append(artifact)

            recorded = self.store.get_cycle(cycle.id)
            if recorded is None:
                raise PersistenceError(f"Cycle {cycle.id} missing after Optimize")
            score = self.scorer.score(recorded)
            self.store.complete_cycle(cycle.id, score, _lessons_learned(cycle_context))

        except Exception as e:
            return self._fail(cycle.id, e, cycle_context, signals, start_time)

        duration = time.time() - start_time
        completed = self.store.get_cycle(cycle.id)
        fallback_phases = [a.phase for a in cycle_context.artifacts if a.used_fallback]
        logger.info("Cycle %s completed with score %.2f", cycle.id, score)
        if self.activity_logger:
            self.activity_logger.log_cycle_complete(
                cycle.id,
                score,
                int(duration * 1000),
                fallback_phases=[p.value for p in fallback_phases],
            )

        follow_up = self._evaluate_triggers(completed, signals + [CYCLE_COMPLETED])
        return ExecutionResult(
            cycle_id=cycle.id,
            success=True,
            final_status=completed.status if completed else None,
            final_score=score,
            fallback_phases=fallback_phases,
            follow_up_tasks=follow_up,
            duration_seconds=duration,
        )

    def _run_phase(self, phase: Phase, context: CycleContext) -> PhaseArtifact:
        """Execute a phase with its configured time bound.

        Raises:
            PhaseTimeoutError: If the phase exceeds its timeout
        """
        timeout = self.config.orchestrator.phase_timeouts.seconds(phase)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"pmcro-{phase.value}")
        try:
            future = executor.submit(self.phase_executor.execute, phase, context)
            try:
                return future.result(timeout=timeout)
            except FuturesTimeoutError:
                context.cancel_event.set()
                raise PhaseTimeoutError(
                    f"Phase {phase.value} of cycle {context.cycle_id} "
                    f"timed out after {timeout}s"
                )
        finally:
            executor.shutdown(wait=False)

    def _record(self, cycle_id: str, phase: Phase, artifact: PhaseArtifact) -> None:
        if not self.store.record_phase(cycle_id, phase, artifact):
            raise PersistenceError(f"Cycle {cycle_id} not found while recording {phase.value}")

        if self.activity_logger:
            self.activity_logger.log_phase_complete(
                cycle_id,
                phase.value,
                artifact.score,
                artifact.used_fallback,
                duration_ms=artifact.duration_ms,
                fallback_reason=artifact.fallback_reason,
            )

    def _fail(
        self,
        cycle_id: str,
        error: Exception,
        context: CycleContext,
        signals: List[str],
        start_time: float,
    ) -> ExecutionResult:
        """Move the cycle to FAILED and report the failure."""
        if isinstance(error, PMCROError):
            message = str(error)
            logger.warning("Cycle %s failed: %s", cycle_id, message)
        else:
            message = f"{type(error).__name__}: {error}"
            logger.exception("Cycle %s failed unexpectedly", cycle_id)

        try:
            self.store.fail_cycle(cycle_id, message)
        except PMCROError as e:
            logger.error("Could not mark cycle %s as failed: %s", cycle_id, e)

        duration = time.time() - start_time
        if self.activity_logger:
            self.activity_logger.log_cycle_fail(cycle_id, message, int(duration * 1000))

        failed = self.store.get_cycle(cycle_id)
        follow_up: List[Task] = []
        if failed is not None and failed.is_terminal:
            follow_up = self._evaluate_triggers(failed, signals + [CYCLE_FAILED])

        return ExecutionResult(
            cycle_id=cycle_id,
            success=False,
            final_status=failed.status if failed else None,
            error_message=message,
            fallback_phases=[a.phase for a in context.artifacts if a.used_fallback],
            follow_up_tasks=follow_up,
            duration_seconds=duration,
        )

    def _evaluate_triggers(self, cycle: Optional[Cycle], signals: List[str]) -> List[Task]:
        """Best-effort trigger evaluation; never affects the cycle outcome."""
        if cycle is None:
            return []
        try:
            return self.trigger_evaluator.evaluate(cycle, events=signals)
        except Exception as e:
            logger.warning("Trigger evaluation after cycle %s failed: %s", cycle.id, e)
            return []


def build_capability_provider(config: PMCROConfig) -> CapabilityProvider:
    """Capability provider described by the ``tools`` section."""
    if not config.tools.command:
        return NullCapabilityProvider()
    return CommandCapabilityProvider(
        config.tools.command,
        working_dir=config.get_working_dir(),
        default_timeout=config.tools.timeout_seconds(),
    )


def _lessons_learned(context: CycleContext) -> str:
    """Summarize Reflect insights and recommendations."""
    reflect = context.payload(Phase.REFLECT)
    parts = list(reflect.get("insights", []))
    recommendations = reflect.get("recommendations", [])
    if recommendations:
        parts.append("Next: " + "; ".join(recommendations))
    return " | ".join(str(p) for p in parts) or "No insights recorded"
