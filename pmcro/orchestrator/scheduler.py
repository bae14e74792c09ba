"""Periodic background loop that drains the task queue through cycles."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import List, Optional

from ..config.models import PMCROConfig, parse_duration
from ..core.cycle_state import TaskStatus
from ..core.exceptions import PMCROError
from ..core.models import ExecutionResult, SelfAssessment, Task
from ..tracking.activity_logger import ActivityLogger
from .cycle_orchestrator import CycleOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of one scheduler sweep."""

    assessment: Optional[SelfAssessment] = None
    swept_tasks: List[Task] = field(default_factory=list)
    results: List[ExecutionResult] = field(default_factory=list)
    requeued: List[str] = field(default_factory=list)
    exhausted: List[str] = field(default_factory=list)

    @property
    def cycles_run(self) -> int:
        """Number of cycles executed in the sweep."""
        return len(self.results)


class CycleScheduler:
    """Claims batches of pending tasks and runs them on a bounded pool.

    Each sweep records a self assessment, runs the TIME_BASED trigger sweep,
    then claims up to ``batch_size`` of the most urgent PENDING tasks. Failed
    tasks are requeued while they have retries left; a retry runs as a fresh
    cycle whose parent is the failed one.
    """

    def __init__(
        self,
        orchestrator: CycleOrchestrator,
        config: Optional[PMCROConfig] = None,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        """Initialize scheduler.

        Args:
            orchestrator: Orchestrator that runs each cycle
            config: Scheduler and assessment configuration
            activity_logger: Optional activity log
        """
        self.orchestrator = orchestrator
        self.store = orchestrator.store
        self.config = config or orchestrator.config
        self.activity_logger = activity_logger or orchestrator.activity_logger

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        """Check if the background loop is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background loop in a daemon thread."""
        with self._lock:
            if self.running:
                return
            self._stop_event.clear()
            self.orchestrator.resume()
            self._thread = threading.Thread(
                target=self._loop, name="pmcro-scheduler", daemon=True
            )
            self._thread.start()
        logger.info(
            "Scheduler started (interval=%s, batch_size=%d, max_workers=%d)",
            self.config.scheduler.interval,
            self.config.scheduler.batch_size,
            self.config.scheduler.max_workers,
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop claiming tasks and wait for in-flight cycles to settle.

        In-flight cycles finish their current phase and are then failed
        explicitly; their tasks go through the normal retry handling.
        """
        self._stop_event.set()
        self.orchestrator.stop()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        logger.info("Scheduler stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stopped. Returns True if the loop has exited."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def run_once(self) -> SweepResult:
        """Run a single sweep synchronously."""
        sweep = SweepResult()
        sweep.assessment = self._assess()
        sweep.swept_tasks = self._sweep_time_triggers()

        if self._stop_event.is_set():
            return sweep

        tasks = self.store.claim_next_tasks(self.config.scheduler.batch_size)
        if not tasks:
            logger.debug("No pending tasks")
            return sweep

        workers = min(self.config.scheduler.max_workers, len(tasks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pmcro-cycle") as pool:
            futures = {pool.submit(self._run_task, task): task for task in tasks}
            for future in as_completed(futures):
                task = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.exception("Task %s could not be settled", task.id)
                    result = self._abandon(task, e)
                sweep.results.append(result)
                if result.success:
                    continue
                try:
                    self._handle_failure(task, result, sweep)
                except Exception:
                    logger.exception("Task %s could not be requeued", task.id)

        self._report(sweep)
        return sweep

    def _loop(self) -> None:
        interval = parse_duration(self.config.scheduler.interval)
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.exception("Scheduler sweep failed")
                if self.activity_logger:
                    self.activity_logger.log_error(f"Scheduler sweep failed: {e}")
            self._stop_event.wait(interval)

    def _report(self, sweep: SweepResult) -> None:
        """Summarize a sweep that ran cycles."""
        message = (
            f"Sweep ran {sweep.cycles_run} cycle(s), "
            f"requeued {len(sweep.requeued)}, exhausted {len(sweep.exhausted)}"
        )
        logger.info(message)
        if self.activity_logger:
            self.activity_logger.log_info(
                message,
                cycles_run=sweep.cycles_run,
                requeued=list(sweep.requeued),
                exhausted=list(sweep.exhausted),
            )

    def _run_task(self, task: Task) -> ExecutionResult:
        """Run one claimed task as a cycle and settle the task."""
        result = self.orchestrator.run_full_cycle(
            task.goal,
            parent_id=task.associated_cycle_id,
            parameters=task.parameters,
            task=task,
        )

        if result.success:
            self.store.complete_task(
                task.id,
                {
                    "cycle_id": result.cycle_id,
                    "success_score": result.final_score,
                    "fallback_phases": [p.value for p in result.fallback_phases],
                },
            )
        else:
            self.store.fail_task(task.id, result.error_message or "Cycle failed")
        return result

    def _abandon(self, task: Task, error: Exception) -> ExecutionResult:
        """Fail a task whose cycle outcome could not be recorded."""
        message = f"{type(error).__name__}: {error}"
        current = self.store.get_task(task.id)
        if current is not None and current.status == TaskStatus.IN_PROGRESS:
            try:
                self.store.fail_task(task.id, message)
            except (PMCROError, ValueError) as e:
                logger.error("Could not mark task %s as failed: %s", task.id, e)
        return ExecutionResult(
            cycle_id=current.associated_cycle_id if current else None,
            success=False,
            error_message=message,
        )

    def _handle_failure(self, task: Task, result: ExecutionResult, sweep: SweepResult) -> None:
        max_retries = self.config.scheduler.max_retries
        if self.store.requeue_task(task.id, max_retries):
            requeued = self.store.get_task(task.id)
            sweep.requeued.append(task.id)
            logger.info("Task %s requeued after failure: %s", task.id, result.error_message)
            if self.activity_logger and requeued is not None:
                self.activity_logger.log_task_retry(
                    task.id, requeued.retry_count, requeued.priority
                )
        else:
            sweep.exhausted.append(task.id)
            logger.warning(
                "Task %s failed after %d attempt(s): %s",
                task.id,
                max_retries,
                result.error_message,
            )

    def _assess(self) -> Optional[SelfAssessment]:
        """Record a self assessment over the recent completed cycles."""
        cycles = self.store.get_completed_cycles(self.config.assessment.window)
        assessment = self.orchestrator.scorer.assess(cycles)
        self.store.save_assessment(assessment)
        if self.activity_logger:
            self.activity_logger.log_assessment(
                assessment.id, assessment.overall_score, assessment.requires_improvement
            )
        return assessment

    def _sweep_time_triggers(self) -> List[Task]:
        tasks = self.orchestrator.trigger_evaluator.evaluate()
        if tasks:
            logger.info("Time-based triggers queued %d task(s)", len(tasks))
        return tasks
