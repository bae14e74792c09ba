"""Tests for PhaseExecutor."""

import pytest

from pmcro.core import (
    PHASE_ORDER,
    CycleCancelledError,
    NullCapabilityProvider,
    Phase,
    PredictionKind,
    ToolResult,
)
from pmcro.orchestrator import PHASE_TOOLS, CycleContext, PhaseExecutor
from tests.mocks import (
    ScriptedCapabilityProvider,
    ScriptedPredictor,
    full_tool_registry,
    unavailable,
)


def run_phases(executor, context, phases=PHASE_ORDER):
    """Execute phases in order, feeding artifacts forward."""
    for phase in phases:
        context.artifacts.append(executor.execute(phase, context))
    return {a.phase: a for a in context.artifacts}


@pytest.fixture
def context():
    return CycleContext(cycle_id="cycle-1", goal="Fix login bug")


class TestFallbackPhases:
    """Test local computation when no tool is available."""

    def test_every_phase_falls_back(self, context):
        """All artifacts are flagged and carry the reason."""
        artifacts = run_phases(PhaseExecutor(NullCapabilityProvider()), context)

        for phase in PHASE_ORDER:
            artifact = artifacts[phase]
            assert artifact.used_fallback
            assert artifact.tool_name == PHASE_TOOLS[phase]
            assert "No capability provider" in artifact.fallback_reason
            assert 0.0 <= artifact.score <= 1.0
            assert artifact.duration_ms is not None

    def test_plan(self, context):
        """Plan classifies the goal and estimates complexity."""
        plan = PhaseExecutor().execute(Phase.PLAN, context)

        assert plan.payload["task_type"] == "BUGFIX"
        assert plan.payload["recommended_approach"].startswith("bugfix:")
        assert plan.payload["estimated_complexity"] == pytest.approx(0.26)
        assert plan.payload["search_results"] == []
        assert plan.score == pytest.approx(0.8)

    def test_plan_uses_successful_history(self, context, completed_cycles):
        """Lessons from cycles scoring above 70 become search results."""
        context.recent_cycles = completed_cycles([95.0, 40.0])

        plan = PhaseExecutor().execute(Phase.PLAN, context)

        assert plan.payload["search_results"] == ["lessons for cycle 0"]
        assert "reuse 1 known pattern(s)" in plan.payload["recommended_approach"]

    def test_make_derives_changes(self, context):
        """Likely plans produce deterministic change descriptors."""
        artifacts = run_phases(PhaseExecutor(), context, [Phase.PLAN, Phase.MAKE])

        changes = artifacts[Phase.MAKE].payload["changes"]
        assert changes[0] == {
            "action": "create",
            "target": "bugfix/fix-login-bug",
            "description": "Create artifact for bugfix work",
        }
        assert artifacts[Phase.MAKE].payload["success_likelihood"] >= 0.5

    def test_make_without_confidence_produces_nothing(self, context):
        """Unlikely plans produce no changes and Check flags it."""
        predictor = ScriptedPredictor({PredictionKind.SUCCESS_PROBABILITY: 0.3})
        executor = PhaseExecutor(prediction_service=predictor)

        artifacts = run_phases(executor, context, [Phase.PLAN, Phase.MAKE, Phase.CHECK])

        assert artifacts[Phase.MAKE].payload["changes"] == []
        assert artifacts[Phase.MAKE].score == pytest.approx(0.3)
        assert artifacts[Phase.CHECK].payload["issues"] == ["No changes were produced"]
        assert artifacts[Phase.CHECK].payload["quality"] == 40.0

    def test_check_quality(self, context):
        """Clean changes score 80 plus 5 per verified change."""
        artifacts = run_phases(PhaseExecutor(), context, PHASE_ORDER[:3])

        check = artifacts[Phase.CHECK]
        assert check.payload["issues"] == []
        assert check.payload["tests"] == ["verified create bugfix/fix-login-bug"]
        assert check.payload["quality"] == 85.0
        assert check.score == pytest.approx(0.85)

    def test_reflect_recommends_restoring_tools(self, context):
        """Fallback artifacts upstream produce a recommendation."""
        artifacts = run_phases(PhaseExecutor(), context, PHASE_ORDER[:4])

        reflect = artifacts[Phase.REFLECT]
        assert reflect.payload["recommendations"] == [
            "Restore tool availability to reduce local estimation"
        ]
        assert reflect.payload["history_size"] == 0
        assert reflect.payload["history_average"] is None
        assert reflect.score == pytest.approx(0.8)

    def test_reflect_compares_history(self, context, completed_cycles):
        """A weak history average asks for broader planning."""
        context.recent_cycles = completed_cycles([60.0, 70.0])

        artifacts = run_phases(PhaseExecutor(), context, PHASE_ORDER[:4])

        reflect = artifacts[Phase.REFLECT]
        assert reflect.payload["history_average"] == 65.0
        assert "Broaden planning context before making changes" in reflect.payload[
            "recommendations"
        ]
        assert reflect.score == pytest.approx(0.6)

    def test_optimize(self, context):
        """Optimize recommends table tools and averages prior scores."""
        artifacts = run_phases(PhaseExecutor(), context)

        optimize = artifacts[Phase.OPTIMIZE]
        assert optimize.payload["recommended_tools"] == [
            "semantic_search",
            "grep_search",
            "create_file",
            "replace_string_in_file",
            "get_errors",
            "run_in_terminal",
        ]
        prior = [artifacts[p].score for p in PHASE_ORDER[:4]]
        expected = 100.0 * sum(prior) / len(prior)
        assert optimize.payload["predicted_quality"] == pytest.approx(expected, abs=1e-3)
        assert optimize.payload["strategy_updates"] == artifacts[Phase.REFLECT].payload[
            "recommendations"
        ]


class TestToolBackedPhases:
    """Test phases served by a capability provider."""

    def test_no_fallback_with_tools(self, context):
        """Tool payloads are used and nothing is flagged."""
        artifacts = run_phases(PhaseExecutor(full_tool_registry()), context)

        assert not any(a.used_fallback for a in artifacts.values())
        assert artifacts[Phase.PLAN].payload["recommended_approach"] == "incremental"
        assert artifacts[Phase.MAKE].payload["changes"][0]["target"] == "src/app.py"
        assert artifacts[Phase.CHECK].payload["quality"] == 85.0
        assert artifacts[Phase.OPTIMIZE].payload["predicted_quality"] == 90.0

    def test_tool_issues_lower_quality(self, context):
        """Each reported issue costs ten points off fifty."""
        executor = PhaseExecutor(full_tool_registry(issues=["E1", "E2"]))

        artifacts = run_phases(executor, context, PHASE_ORDER[:3])

        assert artifacts[Phase.CHECK].payload["quality"] == 30.0

    def test_tool_quality_override(self, context):
        """A quality figure reported by the tool wins."""
        provider = ScriptedCapabilityProvider({"get_errors": {"issues": [], "quality": 97}})

        artifacts = run_phases(PhaseExecutor(provider), context, PHASE_ORDER[:3])

        assert artifacts[Phase.CHECK].payload["quality"] == 97.0

    def test_malformed_payload_falls_back(self, context):
        """A successful call with unusable figures is computed locally instead."""
        provider = ScriptedCapabilityProvider({"get_errors": {"issues": [], "quality": "n/a"}})

        artifacts = run_phases(PhaseExecutor(provider), context, PHASE_ORDER[:3])

        check = artifacts[Phase.CHECK]
        assert check.used_fallback
        assert check.fallback_reason.startswith("malformed tool payload")
        assert check.payload["quality"] == 85.0

    def test_tool_params(self, context):
        """Each phase hands its upstream payload to the tool."""
        provider = ScriptedCapabilityProvider()

        run_phases(PhaseExecutor(provider), context)

        assert provider.called_tools() == [PHASE_TOOLS[p] for p in PHASE_ORDER]
        assert provider.calls[0][1]["query"] == "Fix login bug"
        assert provider.calls[1][1]["plan"]["task_type"] == "BUGFIX"
        assert "changes" in provider.calls[2][1]

    def test_raised_unavailability_falls_back(self, context):
        """ToolUnavailableError from the provider is a fallback, not a failure."""
        provider = ScriptedCapabilityProvider({"semantic_search": unavailable("index offline")})

        plan = PhaseExecutor(provider).execute(Phase.PLAN, context)

        assert plan.used_fallback
        assert plan.fallback_reason == "index offline"

    def test_unavailable_result_falls_back(self, context):
        """An unavailable ToolResult is a fallback."""
        provider = ScriptedCapabilityProvider(
            {"semantic_search": ToolResult.unavailable("quota exceeded")}
        )

        plan = PhaseExecutor(provider).execute(Phase.PLAN, context)

        assert plan.fallback_reason == "quota exceeded"

    def test_other_errors_propagate(self, context):
        """Bugs in a provider are not masked as fallbacks."""
        provider = ScriptedCapabilityProvider({"semantic_search": RuntimeError("bug")})

        with pytest.raises(RuntimeError):
            PhaseExecutor(provider).execute(Phase.PLAN, context)


class TestExecutorContract:
    """Test cancellation and statelessness."""

    def test_cancelled_context(self, context):
        """A cancelled cycle does not start the phase."""
        provider = ScriptedCapabilityProvider()
        context.cancel_event.set()

        with pytest.raises(CycleCancelledError):
            PhaseExecutor(provider).execute(Phase.PLAN, context)
        assert provider.calls == []

    def test_stateless(self, context):
        """The same context gives the same payload."""
        executor = PhaseExecutor()

        first = executor.execute(Phase.PLAN, context)
        second = executor.execute(Phase.PLAN, context)

        assert first.payload == second.payload
        assert first.score == second.score
