"""Tests for prediction services."""

from pmcro.core import Prediction, PredictionKind, RuleBasedPredictor
from pmcro.core.prediction import DEFAULT_TASK_TYPE, predict_or_default
from tests.mocks import ScriptedPredictor


class TestRuleBasedPredictor:
    """Test keyword heuristics."""

    def test_task_types(self):
        """Keywords map to task types."""
        predictor = RuleBasedPredictor()

        assert predictor.predict(PredictionKind.TASK_TYPE, "Fix login bug").value == "BUGFIX"
        assert predictor.predict(PredictionKind.TASK_TYPE, "Add unit tests").value == "TESTING"
        assert predictor.predict(PredictionKind.TASK_TYPE, "Update docs").value == "DOCUMENTATION"
        default = predictor.predict(PredictionKind.TASK_TYPE, "Add export button")
        assert default.value == DEFAULT_TASK_TYPE
        assert default.confidence < 0.8

    def test_success_probability_bounds(self):
        """Probabilities stay in range and drop for risky text."""
        predictor = RuleBasedPredictor()

        simple = predictor.predict(PredictionKind.SUCCESS_PROBABILITY, "small tweak")
        risky = predictor.predict(
            PredictionKind.SUCCESS_PROBABILITY, "refactor and migrate the security layer"
        )

        assert 0.1 <= risky.value < simple.value <= 0.95
        assert risky.details["risks"] == ["refactor", "migrate", "security"]

    def test_deterministic(self):
        """Same input, same answer."""
        predictor = RuleBasedPredictor()
        text = "rewrite the scheduler"

        first = predictor.predict(PredictionKind.SUCCESS_PROBABILITY, text)
        second = predictor.predict(PredictionKind.SUCCESS_PROBABILITY, text)
        assert first == second

    def test_tool_recommendation(self):
        """Phase names look up the tool table."""
        predictor = RuleBasedPredictor()

        check = predictor.predict(PredictionKind.TOOL_RECOMMENDATION, "check")
        unknown = predictor.predict(PredictionKind.TOOL_RECOMMENDATION, "deploy")

        assert [t["tool"] for t in check.value] == ["get_errors", "run_in_terminal"]
        assert [t["tool"] for t in unknown.value] == ["semantic_search"]


class TestPredictOrDefault:
    """Test service fallback."""

    def test_no_service(self):
        """Without a service the rules answer."""
        prediction = predict_or_default(None, PredictionKind.TASK_TYPE, "fix it")
        assert prediction.value == "BUGFIX"

    def test_service_answer_used(self):
        """A service answer of the right kind wins."""
        service = ScriptedPredictor({PredictionKind.TASK_TYPE: "RESEARCH"})

        prediction = predict_or_default(service, PredictionKind.TASK_TYPE, "fix it")

        assert prediction.value == "RESEARCH"
        assert service.calls == [(PredictionKind.TASK_TYPE, "fix it")]

    def test_service_without_answer(self):
        """None from the service falls back to the rules."""
        service = ScriptedPredictor()

        prediction = predict_or_default(service, PredictionKind.TASK_TYPE, "fix it")
        assert prediction.value == "BUGFIX"

    def test_service_failure_absorbed(self):
        """Service exceptions fall back to the rules."""
        service = ScriptedPredictor(error=RuntimeError("model offline"))

        prediction = predict_or_default(service, PredictionKind.SUCCESS_PROBABILITY, "tweak")
        assert 0.0 <= prediction.value <= 1.0

    def test_wrong_kind_ignored(self):
        """Answers of another kind are not trusted."""

        class ConfusedPredictor(ScriptedPredictor):
            def predict(self, kind, text):
                return Prediction(kind=PredictionKind.TASK_TYPE, value="BUGFIX")

        prediction = predict_or_default(
            ConfusedPredictor(), PredictionKind.TOOL_RECOMMENDATION, "plan"
        )
        assert prediction.kind == PredictionKind.TOOL_RECOMMENDATION
