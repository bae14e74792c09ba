"""Activity logging for PMCR-O cycles."""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of events that can be logged."""

    CYCLE_START = "cycle_start"
    PHASE_COMPLETE = "phase_complete"
    PHASE_FALLBACK = "phase_fallback"
    CYCLE_COMPLETE = "cycle_complete"
    CYCLE_FAIL = "cycle_fail"
    TRIGGER_FIRED = "trigger_fired"
    TASK_QUEUED = "task_queued"
    TASK_RETRY = "task_retry"
    ASSESSMENT = "assessment"
    ERROR = "error"
    INFO = "info"


class ActivityEvent(BaseModel):
    """Activity event model."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: EventType = Field(..., description="Type of event")
    session_id: str = Field(..., description="Session identifier")
    cycle_id: Optional[str] = Field(None, description="Cycle identifier")
    task_id: Optional[str] = Field(None, description="Task identifier")
    phase: Optional[str] = Field(None, description="Phase name")
    message: str = Field(..., description="Event message")

    data: Dict[str, Any] = Field(
        default_factory=dict, description="Additional event data"
    )

    duration_ms: Optional[int] = Field(None, description="Duration in milliseconds")


def new_session_id() -> str:
    """Session identifier: UTC timestamp plus a short random suffix."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"{stamp}-{uuid.uuid4().hex[:6]}"


class ActivityLogger:
    """Thread-safe JSONL activity logger for cycle execution."""

    def __init__(self, logs_dir: Path, session_id: Optional[str] = None):
        """Initialize activity logger.

        Args:
            logs_dir: Directory to store log files
            session_id: Session identifier (generated if omitted)
        """
        self.session_id = session_id or new_session_id()
        self.logs_dir = Path(logs_dir)
        self.session_log_dir = self.logs_dir / "sessions" / self.session_id
        self.session_log_dir.mkdir(parents=True, exist_ok=True)

        self.main_log_file = self.session_log_dir / "activity.jsonl"

        self._lock = threading.Lock()

    def log_event(
        self,
        event_type: EventType,
        message: str,
        cycle_id: Optional[str] = None,
        task_id: Optional[str] = None,
        phase: Optional[str] = None,
        duration_ms: Optional[int] = None,
        **data: Any,
    ) -> None:
        """Log an activity event.

        Args:
            event_type: Type of event
            message: Event message
            cycle_id: Optional cycle identifier
            task_id: Optional task identifier
            phase: Optional phase name
            duration_ms: Optional duration
            **data: Additional event data
        """
        event = ActivityEvent(
            event_type=event_type,
            session_id=self.session_id,
            cycle_id=cycle_id,
            task_id=task_id,
            phase=phase,
            message=message,
            duration_ms=duration_ms,
            data=data,
        )
        self._write_event(event)

    def log_cycle_start(
        self, cycle_id: str, context: str, task_id: Optional[str] = None
    ) -> None:
        """Log cycle creation."""
        self.log_event(
            EventType.CYCLE_START,
            f"Cycle started: {context}",
            cycle_id=cycle_id,
            task_id=task_id,
        )

    def log_phase_complete(
        self,
        cycle_id: str,
        phase: str,
        score: float,
        used_fallback: bool,
        duration_ms: Optional[int] = None,
        fallback_reason: Optional[str] = None,
    ) -> None:
        """Log a recorded phase; degraded phases are logged as fallbacks."""
        if used_fallback:
            self.log_event(
                EventType.PHASE_FALLBACK,
                f"Phase {phase} used local fallback",
                cycle_id=cycle_id,
                phase=phase,
                duration_ms=duration_ms,
                score=score,
                reason=fallback_reason,
            )
        else:
            self.log_event(
                EventType.PHASE_COMPLETE,
                f"Phase {phase} complete",
                cycle_id=cycle_id,
                phase=phase,
                duration_ms=duration_ms,
                score=score,
            )

    def log_cycle_complete(
        self, cycle_id: str, score: float, duration_ms: int, **kwargs: Any
    ) -> None:
        """Log cycle completion."""
        self.log_event(
            EventType.CYCLE_COMPLETE,
            f"Cycle completed with score {score:.2f}",
            cycle_id=cycle_id,
            duration_ms=duration_ms,
            score=score,
            **kwargs,
        )

    def log_cycle_fail(self, cycle_id: str, error: str, duration_ms: int) -> None:
        """Log cycle failure."""
        self.log_event(
            EventType.CYCLE_FAIL,
            f"Cycle failed: {error}",
            cycle_id=cycle_id,
            duration_ms=duration_ms,
            error=error,
        )

    def log_trigger_fired(
        self,
        trigger_id: str,
        trigger_name: str,
        trigger_count: int,
        cycle_id: Optional[str] = None,
    ) -> None:
        """Log an evolution trigger firing."""
        self.log_event(
            EventType.TRIGGER_FIRED,
            f"Trigger fired: {trigger_name}",
            cycle_id=cycle_id,
            trigger_id=trigger_id,
            trigger_count=trigger_count,
        )

    def log_task_queued(self, task_id: str, name: str, priority: int) -> None:
        """Log a task entering the queue."""
        self.log_event(
            EventType.TASK_QUEUED,
            f"Task queued: {name}",
            task_id=task_id,
            priority=priority,
        )

    def log_task_retry(self, task_id: str, retry_count: int, priority: int) -> None:
        """Log a failed task being requeued."""
        self.log_event(
            EventType.TASK_RETRY,
            f"Task requeued after {retry_count} failure(s)",
            task_id=task_id,
            retry_count=retry_count,
            priority=priority,
        )

    def log_assessment(
        self, assessment_id: str, overall_score: float, requires_improvement: bool
    ) -> None:
        """Log a self assessment."""
        self.log_event(
            EventType.ASSESSMENT,
            f"Self assessment: {overall_score:.2f}",
            assessment_id=assessment_id,
            overall_score=overall_score,
            requires_improvement=requires_improvement,
        )

    def log_error(self, error: str, cycle_id: Optional[str] = None, **kwargs: Any) -> None:
        """Log error event."""
        self.log_event(EventType.ERROR, error, cycle_id=cycle_id, error=error, **kwargs)

    def log_info(self, message: str, cycle_id: Optional[str] = None, **kwargs: Any) -> None:
        """Log info event."""
        self.log_event(EventType.INFO, message, cycle_id=cycle_id, **kwargs)

    def get_cycle_events(self, cycle_id: str) -> List[ActivityEvent]:
        """Get all events for a specific cycle.

        Args:
            cycle_id: Cycle identifier

        Returns:
            Events for the cycle, in write order
        """
        return [e for e in self._read_events() if e.cycle_id == cycle_id]

    def get_recent_events(self, limit: int = 100) -> List[ActivityEvent]:
        """Get recent events from the session.

        Args:
            limit: Maximum number of events to return

        Returns:
            The last ``limit`` events, oldest first
        """
        if limit <= 0:
            return []
        return self._read_events()[-limit:]

    def _read_events(self) -> List[ActivityEvent]:
        events: List[ActivityEvent] = []
        if not self.main_log_file.exists():
            return events

        with self._lock:
            with open(self.main_log_file, "r", encoding="utf-8") as f:
                lines = f.readlines()

        for line in lines:
            try:
                events.append(ActivityEvent(**json.loads(line.strip())))
            except (json.JSONDecodeError, ValidationError):
                continue
        return events

    def _write_event(self, event: ActivityEvent) -> None:
        """Append one event as a JSON line. Never raises."""
        with self._lock:
            try:
                with open(self.main_log_file, "a", encoding="utf-8") as f:
                    json.dump(
                        event.model_dump(mode="json"),
                        f,
                        default=str,
                        separators=(",", ":"),
                    )
                    f.write("\n")
            except (OSError, TypeError, ValueError) as e:
                logger.warning("Failed to write activity event: %s", e)
