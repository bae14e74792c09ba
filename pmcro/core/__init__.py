"""Core PMCR-O functionality."""

from .capabilities import (
    CapabilityProvider,
    CommandCapabilityProvider,
    LocalToolRegistry,
    NullCapabilityProvider,
    ToolResult,
)
from .cycle_state import (
    PHASE_ORDER,
    CycleStatus,
    Phase,
    TaskStatus,
    get_valid_next_states,
    is_terminal_status,
    is_valid_transition,
    next_phase,
)
from .exceptions import (
    ConfigurationError,
    CycleCancelledError,
    InvalidTransitionError,
    PersistenceError,
    PhaseExecutionError,
    PhaseTimeoutError,
    PMCROError,
    ToolUnavailableError,
    TriggerEvaluationError,
)
from .models import (
    Cycle,
    EvolutionTrigger,
    ExecutionResult,
    PhaseArtifact,
    SelfAssessment,
    Task,
    TriggerType,
)
from .prediction import (
    Prediction,
    PredictionKind,
    PredictionService,
    RuleBasedPredictor,
)
from .state_store import CycleStateStore

__all__ = [
    # Exceptions
    "PMCROError",
    "ConfigurationError",
    "ToolUnavailableError",
    "InvalidTransitionError",
    "PhaseExecutionError",
    "PhaseTimeoutError",
    "CycleCancelledError",
    "PersistenceError",
    "TriggerEvaluationError",
    # State
    "Phase",
    "PHASE_ORDER",
    "CycleStatus",
    "TaskStatus",
    "is_valid_transition",
    "get_valid_next_states",
    "is_terminal_status",
    "next_phase",
    # Records
    "Cycle",
    "Task",
    "EvolutionTrigger",
    "TriggerType",
    "SelfAssessment",
    "PhaseArtifact",
    "ExecutionResult",
    "CycleStateStore",
    # Collaborators
    "CapabilityProvider",
    "NullCapabilityProvider",
    "LocalToolRegistry",
    "CommandCapabilityProvider",
    "ToolResult",
    "PredictionService",
    "PredictionKind",
    "Prediction",
    "RuleBasedPredictor",
]
