"""Cycle orchestration for PMCR-O."""

from .cycle_orchestrator import CycleOrchestrator, build_capability_provider
from .phase_executor import PHASE_TOOLS, CycleContext, PhaseExecutor
from .quality_scorer import (
    PredictiveScoringStrategy,
    QualityScorer,
    ScoringStrategy,
    WeightedScoringStrategy,
)
from .scheduler import CycleScheduler, SweepResult
from .trigger_evaluator import CYCLE_COMPLETED, CYCLE_FAILED, TriggerEvaluator

__all__ = [
    "CycleOrchestrator",
    "build_capability_provider",
    "PhaseExecutor",
    "CycleContext",
    "PHASE_TOOLS",
    "QualityScorer",
    "ScoringStrategy",
    "WeightedScoringStrategy",
    "PredictiveScoringStrategy",
    "TriggerEvaluator",
    "CYCLE_COMPLETED",
    "CYCLE_FAILED",
    "CycleScheduler",
    "SweepResult",
]
