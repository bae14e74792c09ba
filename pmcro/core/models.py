"""Record models for cycles, tasks, evolution triggers and self assessments.

These are the durable records owned by the state store. Field names are
stable: external reporting tooling reads the JSON files directly.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from .cycle_state import (
    PHASE_ORDER,
    STATUS_PHASE,
    CycleStatus,
    Phase,
    TaskStatus,
    is_phase_prefix,
    is_terminal_status,
)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a new record identifier."""
    return str(uuid.uuid4())


class TriggerType(str, Enum):
    """Kinds of evolution trigger rules."""

    QUALITY_THRESHOLD = "quality_threshold"
    TIME_BASED = "time_based"
    EVENT_DRIVEN = "event_driven"


class PhaseArtifact(BaseModel):
    """Structured output produced by executing one phase."""

    phase: Phase = Field(..., description="Phase that produced the artifact")
    payload: Dict[str, Any] = Field(
        default_factory=dict, description="Opaque phase output"
    )
    score: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Phase-local score contribution"
    )
    used_fallback: bool = Field(
        default=False, description="Produced by local estimation instead of a tool"
    )
    tool_name: Optional[str] = Field(None, description="Capability tool invoked")
    fallback_reason: Optional[str] = Field(
        None, description="Why the tool result could not be used"
    )
    created_at: datetime = Field(default_factory=utc_now)
    duration_ms: Optional[int] = Field(None, description="Phase duration")


class Cycle(BaseModel):
    """One attempt to carry a unit of context through all five phases."""

    id: str = Field(default_factory=new_id, description="Unique cycle identifier")
    context: str = Field(default="", description="Goal the cycle works on")
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    status: CycleStatus = CycleStatus.PLANNING
    phase_artifacts: Dict[Phase, PhaseArtifact] = Field(default_factory=dict)
    success_score: Optional[float] = Field(None, ge=0.0, le=100.0)
    lessons_learned: Optional[str] = None
    error_message: Optional[str] = None
    parent_cycle_id: Optional[str] = None
    task_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_phase_consistency(self) -> "Cycle":
        """Check artifacts form a canonical prefix consistent with status."""
        recorded = list(self.phase_artifacts.keys())
        if not is_phase_prefix(recorded):
            raise ValueError(
                f"phase artifacts {[p.value for p in recorded]} are not a prefix "
                f"of {[p.value for p in PHASE_ORDER]}"
            )

        if self.status == CycleStatus.COMPLETED:
            if len(recorded) != len(PHASE_ORDER):
                raise ValueError("completed cycle must have all phase artifacts")
            if self.success_score is None:
                raise ValueError("completed cycle must have a success score")
        elif self.success_score is not None:
            raise ValueError("success_score is only valid on completed cycles")

        if self.status in STATUS_PHASE:
            index = PHASE_ORDER.index(STATUS_PHASE[self.status])
            if len(recorded) not in (index, index + 1):
                raise ValueError(
                    f"status {self.status.value} is inconsistent with "
                    f"{len(recorded)} recorded phase(s)"
                )

        if is_terminal_status(self.status) != (self.end_time is not None):
            raise ValueError("end_time must be set exactly when the cycle is terminal")

        return self

    @property
    def recorded_phases(self) -> List[Phase]:
        """Phases with an artifact, in execution order."""
        return list(self.phase_artifacts.keys())

    @property
    def last_recorded_phase(self) -> Optional[Phase]:
        """Highest phase already recorded, if any."""
        phases = self.recorded_phases
        return phases[-1] if phases else None

    @property
    def is_terminal(self) -> bool:
        """Check if the cycle is COMPLETED or FAILED."""
        return is_terminal_status(self.status)

    @property
    def used_fallback(self) -> bool:
        """Check if any phase ran in degraded mode."""
        return any(a.used_fallback for a in self.phase_artifacts.values())

    @property
    def duration_seconds(self) -> Optional[float]:
        """Cycle duration in seconds, once terminal."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None


class Task(BaseModel):
    """A unit of work queued for execution."""

    id: str = Field(default_factory=new_id, description="Unique task identifier")
    name: str = Field(..., description="Short task name")
    kind: str = Field(default="general", description="Free-form classification")
    description: str = Field(default="", description="What the task should achieve")
    status: TaskStatus = TaskStatus.PENDING
    priority: int = Field(default=5, description="Higher is more urgent")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    associated_cycle_id: Optional[str] = None
    retry_count: int = Field(default=0, ge=0)
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate task name."""
        if not v.strip():
            raise ValueError("Task name cannot be empty")
        return v.strip()

    @property
    def goal(self) -> str:
        """Free-text goal handed to the Plan phase."""
        if self.description:
            return f"{self.name}: {self.description}"
        return self.name


class EvolutionTrigger(BaseModel):
    """A standing rule that produces new tasks when satisfied."""

    id: str = Field(default_factory=new_id)
    name: str = Field(..., description="Trigger name")
    description: Optional[str] = None
    trigger_type: TriggerType
    conditions: Dict[str, Any] = Field(default_factory=dict)
    actions: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    last_triggered_at: Optional[datetime] = None
    trigger_count: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_firing_history(self) -> "EvolutionTrigger":
        """lastTriggeredAt is set if and only if the trigger has fired."""
        if (self.trigger_count > 0) != (self.last_triggered_at is not None):
            raise ValueError(
                "last_triggered_at must be set exactly when trigger_count > 0"
            )
        return self


class SelfAssessment(BaseModel):
    """Point-in-time quality measurement across recent cycles."""

    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    assessment_type: str = Field(default="cycle_quality")
    overall_score: float = Field(..., ge=0.0, le=100.0)
    quality_floor: float = Field(default=80.0, ge=0.0, le=100.0)
    metrics: Dict[str, Any] = Field(default_factory=dict)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    improvement_areas: List[str] = Field(default_factory=list)
    related_cycle_id: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def requires_improvement(self) -> bool:
        """True when below the quality floor or any weakness was found."""
        return self.overall_score < self.quality_floor or bool(self.weaknesses)


@dataclass
class ExecutionResult:
    """Result of running one cycle end-to-end."""

    cycle_id: Optional[str]
    success: bool
    final_status: Optional[CycleStatus] = None
    final_score: Optional[float] = None
    error_message: Optional[str] = None
    fallback_phases: List[Phase] = field(default_factory=list)
    follow_up_tasks: List[Task] = field(default_factory=list)
    duration_seconds: float = 0.0
