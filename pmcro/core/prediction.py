"""Prediction services used to bias phase output and scoring.

The service is optional. Callers go through ``predict_or_default`` so a
missing or failing predictor degrades to the rule-based answer instead of
failing the phase.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class PredictionKind(str, Enum):
    """Questions a prediction service can answer."""

    TASK_TYPE = "task_type"
    SUCCESS_PROBABILITY = "success_probability"
    TOOL_RECOMMENDATION = "tool_recommendation"


@dataclass
class Prediction:
    """Answer from a prediction service.

    ``value`` is a task-type string for TASK_TYPE, a probability in [0, 1]
    for SUCCESS_PROBABILITY, and a list of ``{"tool", "effectiveness"}``
    dicts for TOOL_RECOMMENDATION.
    """

    kind: PredictionKind
    value: Any
    confidence: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)


class PredictionService:
    """Base class for prediction services."""

    def predict(self, kind: PredictionKind, text: str) -> Optional[Prediction]:
        """Answer a prediction question, or None if it cannot."""
        raise NotImplementedError


# Keyword -> task type, checked in order
TASK_TYPE_KEYWORDS = [
    ("test", "TESTING"),
    ("doc", "DOCUMENTATION"),
    ("bug", "BUGFIX"),
    ("fix", "BUGFIX"),
]

DEFAULT_TASK_TYPE = "FEATURE"

# Phase -> ordered (tool, effectiveness) recommendations
PHASE_TOOL_TABLE: Dict[str, List[Dict[str, Any]]] = {
    "plan": [
        {"tool": "semantic_search", "effectiveness": 0.90},
        {"tool": "grep_search", "effectiveness": 0.85},
    ],
    "make": [
        {"tool": "create_file", "effectiveness": 0.95},
        {"tool": "replace_string_in_file", "effectiveness": 0.93},
    ],
    "check": [
        {"tool": "get_errors", "effectiveness": 0.96},
        {"tool": "run_in_terminal", "effectiveness": 0.94},
    ],
    "reflect": [
        {"tool": "grep_search", "effectiveness": 0.91},
        {"tool": "semantic_search", "effectiveness": 0.88},
    ],
    "optimize": [
        {"tool": "replace_string_in_file", "effectiveness": 0.90},
        {"tool": "run_in_terminal", "effectiveness": 0.88},
    ],
}

_RISK_WORDS = ("refactor", "migrate", "rewrite", "security", "concurrency")


class RuleBasedPredictor(PredictionService):
    """Deterministic keyword heuristics. Same input, same answer."""

    def predict(self, kind: PredictionKind, text: str) -> Optional[Prediction]:
        kind = PredictionKind(kind)
        if kind == PredictionKind.TASK_TYPE:
            return self._task_type(text)
        if kind == PredictionKind.SUCCESS_PROBABILITY:
            return self._success_probability(text)
        return self._tool_recommendation(text)

    def _task_type(self, text: str) -> Prediction:
        lowered = text.lower()
        for keyword, task_type in TASK_TYPE_KEYWORDS:
            if keyword in lowered:
                return Prediction(
                    kind=PredictionKind.TASK_TYPE,
                    value=task_type,
                    confidence=0.8,
                    details={"keyword": keyword},
                )
        return Prediction(
            kind=PredictionKind.TASK_TYPE, value=DEFAULT_TASK_TYPE, confidence=0.6
        )

    def _success_probability(self, text: str) -> Prediction:
        lowered = text.lower()
        risks = [word for word in _RISK_WORDS if word in lowered]
        words = len(text.split())

        # Longer, riskier approaches are less likely to land in one cycle
        probability = 0.9 - 0.08 * len(risks) - min(0.2, words / 500)
        probability = max(0.1, min(0.95, probability))
        return Prediction(
            kind=PredictionKind.SUCCESS_PROBABILITY,
            value=round(probability, 4),
            confidence=0.7,
            details={"risks": risks},
        )

    def _tool_recommendation(self, text: str) -> Prediction:
        phase = text.strip().lower()
        tools = PHASE_TOOL_TABLE.get(phase, [{"tool": "semantic_search", "effectiveness": 0.8}])
        return Prediction(
            kind=PredictionKind.TOOL_RECOMMENDATION,
            value=[dict(t) for t in tools],
            confidence=0.75,
            details={"phase": phase},
        )


_RULES = RuleBasedPredictor()


def predict_or_default(
    service: Optional[PredictionService], kind: PredictionKind, text: str
) -> Prediction:
    """Ask ``service``, falling back to the rule-based predictor.

    Exceptions from the service are logged and absorbed.
    """
    if service is not None:
        try:
            prediction = service.predict(kind, text)
        except Exception as e:
            logger.warning("Prediction service failed for %s: %s", kind.value, e)
            prediction = None
        if prediction is not None and prediction.kind == kind:
            return prediction
    return _RULES.predict(kind, text)
