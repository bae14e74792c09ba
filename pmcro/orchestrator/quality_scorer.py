"""Quality scoring for cycles and self assessment across cycles."""

import json
import logging
from datetime import datetime
from statistics import mean
from typing import Callable, Dict, List, Optional, Sequence

from ..core.cycle_state import PHASE_ORDER, CycleStatus, Phase
from ..core.models import Cycle, SelfAssessment, utc_now
from ..core.prediction import PredictionKind, PredictionService

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS: Dict[Phase, float] = {
    Phase.PLAN: 0.10,
    Phase.MAKE: 0.15,
    Phase.CHECK: 0.35,
    Phase.REFLECT: 0.10,
    Phase.OPTIMIZE: 0.30,
}

# Overall score used when no completed cycle exists yet
NEUTRAL_SCORE = 75.0

# (upper bound, improvement area), checked in order
IMPROVEMENT_BANDS = [
    (60.0, "Basic execution quality"),
    (75.0, "Planning effectiveness"),
    (85.0, "Optimization strategies"),
]

STRONG_PHASE_SCORE = 0.8


class ScoringStrategy:
    """Base class for cycle scoring strategies."""

    name = "base"

    def score(self, cycle: Cycle) -> float:
        """Return a success score in [0, 100] for the cycle's artifacts."""
        raise NotImplementedError


class WeightedScoringStrategy(ScoringStrategy):
    """Weighted mean of the phase-local scores, scaled to 0-100."""

    name = "weighted"

    def __init__(self, weights: Optional[Dict[Phase, float]] = None):
        self.weights = dict(weights or DEFAULT_WEIGHTS)

    def score(self, cycle: Cycle) -> float:
        total_weight = 0.0
        weighted = 0.0
        for phase, artifact in cycle.phase_artifacts.items():
            weight = self.weights.get(phase, 0.0)
            total_weight += weight
            weighted += weight * artifact.score

        if total_weight <= 0:
            return 0.0
        return 100.0 * weighted / total_weight


class PredictiveScoringStrategy(ScoringStrategy):
    """Blend the weighted score with a success-probability prediction.

    The prediction input is built only from the recorded artifacts, so a
    deterministic service gives a deterministic score. If the service fails
    or has no answer the weighted score is used unchanged.
    """

    name = "predictive"

    def __init__(
        self,
        prediction_service: PredictionService,
        weights: Optional[Dict[Phase, float]] = None,
        blend: float = 0.3,
    ):
        self.prediction_service = prediction_service
        self.fallback = WeightedScoringStrategy(weights)
        self.blend = max(0.0, min(1.0, blend))

    def score(self, cycle: Cycle) -> float:
        base = self.fallback.score(cycle)
        try:
            prediction = self.prediction_service.predict(
                PredictionKind.SUCCESS_PROBABILITY, _artifact_digest(cycle)
            )
        except Exception as e:
            logger.warning("Predictive scoring failed for cycle %s: %s", cycle.id, e)
            return base

        if prediction is None or prediction.kind != PredictionKind.SUCCESS_PROBABILITY:
            return base

        probability = max(0.0, min(1.0, float(prediction.value)))
        return (1.0 - self.blend) * base + self.blend * 100.0 * probability


class QualityScorer:
    """Scores cycles and produces self assessments."""

    def __init__(
        self,
        strategy: Optional[ScoringStrategy] = None,
        quality_floor: float = 80.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize quality scorer.

        Args:
            strategy: Scoring strategy (weighted by default)
            quality_floor: Overall score below which improvement is required
            clock: Time source for assessment timestamps
        """
        self.strategy = strategy or WeightedScoringStrategy()
        self.quality_floor = quality_floor
        self._clock = clock or utc_now

    @classmethod
    def from_config(
        cls,
        config,
        prediction_service: Optional[PredictionService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "QualityScorer":
        """Build a scorer from a PMCROConfig."""
        weights = config.scoring.phase_weights()
        if config.scoring.strategy == "predictive" and prediction_service is not None:
            strategy: ScoringStrategy = PredictiveScoringStrategy(prediction_service, weights)
        else:
            strategy = WeightedScoringStrategy(weights)
        return cls(strategy, quality_floor=config.assessment.quality_floor, clock=clock)

    def score(self, cycle: Cycle) -> float:
        """Score a cycle from its recorded artifacts.

        Returns:
            Success score clamped to [0, 100]
        """
        value = self.strategy.score(cycle)
        return round(max(0.0, min(100.0, float(value))), 4)

    def assess(
        self,
        cycles: Sequence[Cycle],
        related_cycle_id: Optional[str] = None,
    ) -> SelfAssessment:
        """Assess quality across recent cycles.

        Only COMPLETED cycles count toward the overall score. The caller
        decides the window and persists the result.

        Args:
            cycles: Recent cycles, any status
            related_cycle_id: Cycle that prompted the assessment, if any

        Returns:
            A new SelfAssessment
        """
        completed = [
            c
            for c in cycles
            if c.status == CycleStatus.COMPLETED and c.success_score is not None
        ]
        scores = [c.success_score for c in completed if c.success_score is not None]
        overall = mean(scores) if scores else NEUTRAL_SCORE

        phase_averages = _phase_averages(completed)
        failed = sum(1 for c in cycles if c.status == CycleStatus.FAILED)
        degraded = sum(1 for c in completed if c.used_fallback)

        strengths = [
            f"Consistent {phase.value} phase"
            for phase, average in phase_averages.items()
            if average >= STRONG_PHASE_SCORE
        ]

        weaknesses: List[str] = []
        if overall < self.quality_floor:
            weaknesses.append("Performance below threshold")
        if cycles and failed * 2 > len(cycles):
            weaknesses.append("Most recent cycles failed")

        improvement_areas = [area for bound, area in IMPROVEMENT_BANDS if overall < bound]

        return SelfAssessment(
            timestamp=self._clock(),
            overall_score=round(overall, 4),
            quality_floor=self.quality_floor,
            metrics={
                "completed_cycles": len(completed),
                "failed_cycles": failed,
                "degraded_cycles": degraded,
                "phase_averages": {p.value: round(v, 4) for p, v in phase_averages.items()},
            },
            strengths=strengths,
            weaknesses=weaknesses,
            improvement_areas=improvement_areas,
            related_cycle_id=related_cycle_id,
        )


def _phase_averages(cycles: Sequence[Cycle]) -> Dict[Phase, float]:
    averages: Dict[Phase, float] = {}
    for phase in PHASE_ORDER:
        scores = [
            c.phase_artifacts[phase].score for c in cycles if phase in c.phase_artifacts
        ]
        if scores:
            averages[phase] = mean(scores)
    return averages


def _artifact_digest(cycle: Cycle) -> str:
    """Stable text summary of a cycle's artifacts."""
    summary = {
        phase.value: {"score": artifact.score, "payload": artifact.payload}
        for phase, artifact in cycle.phase_artifacts.items()
    }
    return json.dumps(summary, sort_keys=True, default=str)
