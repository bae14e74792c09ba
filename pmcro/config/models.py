"""Configuration models for PMCR-O."""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..core.cycle_state import Phase
from ..core.models import TriggerType

_DURATION_PATTERN = re.compile(r"^(\d+)([smh])$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600}


def parse_duration(value: str) -> int:
    """Convert a duration string like '30s', '5m' or '24h' to seconds.

    Raises:
        ValueError: If the string is not a valid duration
    """
    match = _DURATION_PATTERN.match(str(value).strip())
    if not match:
        raise ValueError(
            f"Duration must be in format like '300s', '5m' or '24h', got '{value}'"
        )
    return int(match.group(1)) * _DURATION_UNITS[match.group(2)]


def _validate_duration(v: str) -> str:
    parse_duration(v)
    return v


class PhaseTimeouts(BaseModel):
    """Upper bound on each phase call."""

    plan: str = Field(default="5m", description="Plan phase timeout")
    make: str = Field(default="5m", description="Make phase timeout")
    check: str = Field(default="5m", description="Check phase timeout")
    reflect: str = Field(default="5m", description="Reflect phase timeout")
    optimize: str = Field(default="5m", description="Optimize phase timeout")

    @field_validator("plan", "make", "check", "reflect", "optimize")
    @classmethod
    def validate_timeout(cls, v: str) -> str:
        """Validate timeout format."""
        return _validate_duration(v)

    def seconds(self, phase: Phase) -> int:
        """Timeout for a phase in seconds."""
        return parse_duration(getattr(self, Phase(phase).value))


class OrchestratorConfig(BaseModel):
    """Cycle orchestration configuration."""

    phase_timeouts: PhaseTimeouts = Field(
        default_factory=PhaseTimeouts, description="Per-phase timeouts"
    )
    reflect_history: int = Field(
        default=5, description="Recent completed cycles given to Reflect"
    )

    @field_validator("reflect_history")
    @classmethod
    def validate_history(cls, v: int) -> int:
        """Validate history size."""
        if v < 0:
            raise ValueError("reflect_history cannot be negative")
        return v


class ScoringConfig(BaseModel):
    """Quality scoring configuration."""

    strategy: str = Field(default="weighted", description="Scoring strategy")
    weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "plan": 0.10,
            "make": 0.15,
            "check": 0.35,
            "reflect": 0.10,
            "optimize": 0.30,
        },
        description="Per-phase score weights",
    )

    @field_validator("strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        """Validate scoring strategy."""
        valid_strategies = ["weighted", "predictive"]
        if v not in valid_strategies:
            raise ValueError(
                f"strategy must be one of: {', '.join(valid_strategies)}"
            )
        return v

    @field_validator("weights")
    @classmethod
    def validate_weights(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Validate phase weights."""
        valid_phases = [p.value for p in Phase]
        for phase, weight in v.items():
            if phase not in valid_phases:
                raise ValueError(
                    f"Unknown phase '{phase}'. Valid phases: {', '.join(valid_phases)}"
                )
            if weight < 0:
                raise ValueError(f"Weight for {phase} cannot be negative")
        if sum(v.values()) <= 0:
            raise ValueError("Phase weights must sum to a positive value")
        return v

    def phase_weights(self) -> Dict[Phase, float]:
        """Weights keyed by phase; missing phases weigh 0."""
        return {phase: float(self.weights.get(phase.value, 0.0)) for phase in Phase}


class TriggerSeed(BaseModel):
    """Evolution trigger seeded into the store at startup."""

    name: str = Field(..., description="Unique trigger name")
    description: Optional[str] = None
    trigger_type: TriggerType
    conditions: Dict[str, Any] = Field(default_factory=dict)
    actions: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class TriggersConfig(BaseModel):
    """Evolution trigger configuration."""

    quality_window: int = Field(default=10, description="Cycles averaged for quality")
    quality_threshold: float = Field(default=75.0, description="Quality trigger threshold")
    min_completed_cycles: int = Field(
        default=10, description="Completed cycles needed before quality triggers fire"
    )
    time_interval: str = Field(default="24h", description="Time-based trigger interval")
    default_task_priority: int = Field(default=5, description="Routine task priority")
    evolution_task_priority: int = Field(
        default=9, description="Priority of tasks spawned by triggers"
    )
    seeds: List[TriggerSeed] = Field(default_factory=list, description="Seeded triggers")

    @field_validator("time_interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        """Validate interval format."""
        return _validate_duration(v)

    @field_validator("quality_window", "min_completed_cycles")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate positive integers."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("quality_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Validate quality threshold."""
        if not 0.0 <= v <= 100.0:
            raise ValueError("quality_threshold must be between 0 and 100")
        return v

    @model_validator(mode="after")
    def validate_priorities(self) -> "TriggersConfig":
        """Evolution work must outrank routine work."""
        if self.evolution_task_priority <= self.default_task_priority:
            raise ValueError(
                "evolution_task_priority must exceed default_task_priority"
            )
        return self


class AssessmentConfig(BaseModel):
    """Self assessment configuration."""

    quality_floor: float = Field(default=80.0, description="Minimum acceptable quality")
    window: int = Field(default=10, description="Completed cycles assessed")

    @field_validator("quality_floor")
    @classmethod
    def validate_floor(cls, v: float) -> float:
        """Validate quality floor."""
        if not 0.0 <= v <= 100.0:
            raise ValueError("quality_floor must be between 0 and 100")
        return v

    @field_validator("window")
    @classmethod
    def validate_window(cls, v: int) -> int:
        """Validate window size."""
        if v <= 0:
            raise ValueError("window must be positive")
        return v


class SchedulerConfig(BaseModel):
    """Background loop configuration."""

    interval: str = Field(default="5m", description="Time between sweeps")
    batch_size: int = Field(default=3, description="Tasks claimed per sweep")
    max_workers: int = Field(default=2, description="Concurrent cycles")
    max_retries: int = Field(default=3, description="Attempts per task")

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        """Validate interval format."""
        return _validate_duration(v)

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        """Validate batch size."""
        if v < 1:
            raise ValueError("batch_size must be at least 1")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        """Validate worker count."""
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        if v > 10:
            raise ValueError("max_workers cannot exceed 10")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate retry budget."""
        if v < 0:
            raise ValueError("max_retries cannot be negative")
        return v


class StorageConfig(BaseModel):
    """State store configuration."""

    state_dir: str = Field(default=".pmcro/state", description="Record directory")


class ToolsConfig(BaseModel):
    """Capability provider configuration."""

    command: Optional[str] = Field(
        default=None, description="Command run per tool call (no tools if unset)"
    )
    working_dir: str = Field(default=".", description="Working directory")
    timeout: str = Field(default="2m", description="Tool call timeout")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: str) -> str:
        """Validate timeout format."""
        return _validate_duration(v)

    def timeout_seconds(self) -> int:
        """Tool call timeout in seconds."""
        return parse_duration(self.timeout)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format")
    output_dir: str = Field(default=".pmcro/logs", description="Log output directory")
    retention_days: int = Field(default=30, description="Log retention in days")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARN", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "text"]
        if v not in valid_formats:
            raise ValueError(f"format must be one of: {', '.join(valid_formats)}")
        return v

    @field_validator("retention_days")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        """Validate retention days."""
        if v < 1:
            raise ValueError("retention_days must be at least 1")
        if v > 365:
            raise ValueError("retention_days cannot exceed 365")
        return v


class PMCROConfig(BaseModel):
    """Main PMCR-O configuration."""

    orchestrator: OrchestratorConfig = Field(
        default_factory=OrchestratorConfig, description="Orchestrator configuration"
    )
    scoring: ScoringConfig = Field(
        default_factory=ScoringConfig, description="Scoring configuration"
    )
    triggers: TriggersConfig = Field(
        default_factory=TriggersConfig, description="Trigger configuration"
    )
    assessment: AssessmentConfig = Field(
        default_factory=AssessmentConfig, description="Assessment configuration"
    )
    scheduler: SchedulerConfig = Field(
        default_factory=SchedulerConfig, description="Scheduler configuration"
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig, description="Storage configuration"
    )
    tools: ToolsConfig = Field(default_factory=ToolsConfig, description="Tool configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    def get_log_dir(self) -> Path:
        """Get the log directory as a Path object."""
        return Path(self.logging.output_dir).expanduser().resolve()

    def get_state_dir(self) -> Path:
        """Get the state directory as a Path object."""
        return Path(self.storage.state_dir).expanduser().resolve()

    def get_working_dir(self) -> Path:
        """Get the tool working directory as a Path object."""
        return Path(self.tools.working_dir).expanduser().resolve()


def resolve_env_vars(obj: Any) -> Any:
    """Recursively resolve ${VAR} references in configuration data."""
    if isinstance(obj, dict):
        return {key: resolve_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [resolve_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return _resolve_env_var_string(obj)
    else:
        return obj


def _resolve_env_var_string(value: str) -> str:
    """Resolve environment variables in a string."""
    # ${VAR_NAME} or ${VAR_NAME:default_value}
    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replace_var(match):
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.getenv(var_name, default_value)

    return re.sub(pattern, replace_var, value)
