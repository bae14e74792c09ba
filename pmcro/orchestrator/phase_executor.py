"""Phase executor: runs one PMCR-O phase and returns its artifact.

Each phase asks the capability provider for one tool call. When the provider
cannot serve the call, the phase computes its artifact locally from the
cycle context instead, and the artifact is flagged ``used_fallback`` so the
cycle stays auditable. The executor keeps no state between calls.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from statistics import mean
from typing import Any, Callable, Dict, List, Optional

from ..core.capabilities import CapabilityProvider, NullCapabilityProvider, ToolResult
from ..core.cycle_state import Phase
from ..core.exceptions import CycleCancelledError, ToolUnavailableError
from ..core.models import Cycle, PhaseArtifact
from ..core.prediction import PredictionKind, PredictionService, predict_or_default

logger = logging.getLogger(__name__)

# Tool invoked by each phase
PHASE_TOOLS: Dict[Phase, str] = {
    Phase.PLAN: "semantic_search",
    Phase.MAKE: "apply_changes",
    Phase.CHECK: "get_errors",
    Phase.REFLECT: "sequential_thinking",
    Phase.OPTIMIZE: "recommend_tools",
}

# Make only proposes changes when success is at least this likely
MIN_SUCCESS_LIKELIHOOD = 0.5

MAX_CHANGES = 4


@dataclass
class CycleContext:
    """Everything a phase may read.

    ``artifacts`` holds the artifacts of the phases already executed in this
    cycle, in order. ``recent_cycles`` is read-only history for Reflect.
    """

    cycle_id: str
    goal: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    artifacts: List[PhaseArtifact] = field(default_factory=list)
    recent_cycles: List[Cycle] = field(default_factory=list)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def artifact(self, phase: Phase) -> Optional[PhaseArtifact]:
        """Artifact of an earlier phase, if it ran."""
        for artifact in self.artifacts:
            if artifact.phase == phase:
                return artifact
        return None

    def payload(self, phase: Phase) -> Dict[str, Any]:
        """Payload of an earlier phase, or an empty dict."""
        artifact = self.artifact(phase)
        return artifact.payload if artifact else {}

    @property
    def cancelled(self) -> bool:
        """Check if the cycle was asked to stop."""
        return self.cancel_event.is_set()


class PhaseExecutor:
    """Executes single phases against a capability provider."""

    def __init__(
        self,
        capability_provider: Optional[CapabilityProvider] = None,
        prediction_service: Optional[PredictionService] = None,
    ):
        """Initialize phase executor.

        Args:
            capability_provider: Tool-call provider (no tools if None)
            prediction_service: Optional predictor; rule-based defaults otherwise
        """
        self.capability_provider = capability_provider or NullCapabilityProvider()
        self.prediction_service = prediction_service
        self._handlers: Dict[Phase, Callable[[CycleContext, ToolResult], PhaseArtifact]] = {
            Phase.PLAN: self._plan,
            Phase.MAKE: self._make,
            Phase.CHECK: self._check,
            Phase.REFLECT: self._reflect,
            Phase.OPTIMIZE: self._optimize,
        }

    def execute(self, phase: Phase, context: CycleContext) -> PhaseArtifact:
        """Execute one phase.

        Args:
            phase: Phase to run
            context: Accumulated cycle context

        Returns:
            PhaseArtifact for the phase

        Raises:
            CycleCancelledError: If the cycle was cancelled before the tool call
        """
        phase = Phase(phase)
        if context.cancelled:
            raise CycleCancelledError(
                f"Cycle {context.cycle_id} cancelled before {phase.value} phase"
            )

        start_time = time.time()
        tool_name = PHASE_TOOLS[phase]
        result = self._invoke(tool_name, self._tool_params(phase, context))

        try:
            artifact = self._handlers[phase](context, result)
        except (ValueError, TypeError, AttributeError) as e:
            if not result.ok:
                raise
            logger.warning(
                "Tool %s returned a malformed payload for cycle %s: %s",
                tool_name,
                context.cycle_id,
                e,
            )
            result = ToolResult.unavailable(f"malformed tool payload: {e}")
            artifact = self._handlers[phase](context, result)

        artifact.tool_name = tool_name
        artifact.duration_ms = int((time.time() - start_time) * 1000)
        if not result.ok:
            artifact.used_fallback = True
            artifact.fallback_reason = result.error
            logger.info(
                "Phase %s of cycle %s used local fallback: %s",
                phase.value,
                context.cycle_id,
                result.error,
            )
        return artifact

    def _invoke(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        """Call the provider; unavailability becomes a result, never an error."""
        try:
            result = self.capability_provider.invoke(tool_name, params)
        except ToolUnavailableError as e:
            return ToolResult.unavailable(str(e))
        if result is None:
            return ToolResult.unavailable(f"Tool {tool_name} returned no result")
        return result

    def _tool_params(self, phase: Phase, context: CycleContext) -> Dict[str, Any]:
        """Parameters handed to the phase's tool."""
        if phase == Phase.PLAN:
            return {"query": context.goal, "parameters": context.parameters}
        if phase == Phase.MAKE:
            return {"plan": context.payload(Phase.PLAN)}
        if phase == Phase.CHECK:
            return {"changes": context.payload(Phase.MAKE).get("changes", [])}
        if phase == Phase.REFLECT:
            return {
                "check": context.payload(Phase.CHECK),
                "history": [_cycle_summary(c) for c in context.recent_cycles],
            }
        return {"reflection": context.payload(Phase.REFLECT)}

    def _predict(self, kind: PredictionKind, text: str):
        return predict_or_default(self.prediction_service, kind, text)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _plan(self, context: CycleContext, result: ToolResult) -> PhaseArtifact:
        """Recommend an approach and estimate complexity for the goal."""
        task_type = self._predict(PredictionKind.TASK_TYPE, context.goal)

        if result.ok:
            search_results = [str(r) for r in result.payload.get("results", [])]
            approach = result.payload.get("approach")
        else:
            search_results = _historical_lessons(context.recent_cycles)
            approach = None

        if not approach:
            steps = ["analyse the goal", "apply changes incrementally", "validate each change"]
            if search_results:
                steps.insert(1, f"reuse {len(search_results)} known pattern(s)")
            approach = f"{str(task_type.value).lower()}: " + ", ".join(steps)

        words = len(context.goal.split())
        complexity = min(1.0, 0.2 + 0.02 * words + 0.05 * len(context.parameters))

        return PhaseArtifact(
            phase=Phase.PLAN,
            payload={
                "goal": context.goal,
                "task_type": task_type.value,
                "recommended_approach": approach,
                "estimated_complexity": round(complexity, 4),
                "search_results": search_results,
            },
            score=_clamp(task_type.confidence),
        )

    def _make(self, context: CycleContext, result: ToolResult) -> PhaseArtifact:
        """Turn the plan into concrete change descriptors."""
        plan = context.payload(Phase.PLAN)
        approach = str(plan.get("recommended_approach", context.goal))
        likelihood = float(
            self._predict(PredictionKind.SUCCESS_PROBABILITY, approach).value
        )

        if result.ok:
            changes = [_normalize_change(c) for c in result.payload.get("changes", [])]
            likelihood = float(result.payload.get("success_likelihood", likelihood))
        elif likelihood >= MIN_SUCCESS_LIKELIHOOD:
            changes = _derive_changes(plan, context.goal)
        else:
            changes = []

        return PhaseArtifact(
            phase=Phase.MAKE,
            payload={
                "changes": changes,
                "success_likelihood": round(_clamp(likelihood), 4),
            },
            score=_clamp(likelihood),
        )

    def _check(self, context: CycleContext, result: ToolResult) -> PhaseArtifact:
        """Inspect the changes and measure quality."""
        changes = context.payload(Phase.MAKE).get("changes", [])

        if result.ok:
            issues = [str(i) for i in result.payload.get("issues", [])]
            tests = [str(t) for t in result.payload.get("tests", [])]
        else:
            issues = []
            if not changes:
                issues.append("No changes were produced")
            issues.extend(
                f"Change {i + 1} has no target" for i, c in enumerate(changes) if not c.get("target")
            )
            tests = [
                f"verified {c['action']} {c['target']}" for c in changes if c.get("target")
            ] if not issues else []

        quality = _quality_figure(len(issues), len(tests))
        if result.ok and "quality" in result.payload:
            quality = max(0.0, min(100.0, float(result.payload["quality"])))

        return PhaseArtifact(
            phase=Phase.CHECK,
            payload={"issues": issues, "tests": tests, "quality": quality},
            score=quality / 100.0,
        )

    def _reflect(self, context: CycleContext, result: ToolResult) -> PhaseArtifact:
        """Derive insights and recommendations from the check and history."""
        check = context.payload(Phase.CHECK)
        issues = check.get("issues", [])
        scores = [
            c.success_score for c in context.recent_cycles if c.success_score is not None
        ]
        history_average = mean(scores) if scores else None

        if result.ok:
            insights = [str(i) for i in result.payload.get("insights", [])]
            recommendations = [str(r) for r in result.payload.get("recommendations", [])]
        else:
            insights = []
            if history_average is not None:
                insights.append(
                    f"{len(scores)} recent completed cycle(s) averaged "
                    f"{history_average:.2f} quality"
                )
            else:
                insights.append("No completed cycle history to compare against")
            insights.append(
                f"Check found {len(issues)} issue(s) at quality {check.get('quality', 0)}"
            )

            recommendations = []
            if issues:
                recommendations.append("Focus on error prevention in the make phase")
            if history_average is not None and history_average < 80:
                recommendations.append("Broaden planning context before making changes")
            if any(a.used_fallback for a in context.artifacts):
                recommendations.append("Restore tool availability to reduce local estimation")

        score = max(0.0, 1.0 - 0.2 * len(recommendations))
        return PhaseArtifact(
            phase=Phase.REFLECT,
            payload={
                "insights": insights,
                "recommendations": recommendations,
                "history_average": history_average,
                "history_size": len(context.recent_cycles),
            },
            score=score,
        )

    def _optimize(self, context: CycleContext, result: ToolResult) -> PhaseArtifact:
        """Recommend tools/strategy and predict next-cycle quality."""
        if result.ok:
            tools = [str(t) for t in result.payload.get("recommended_tools", [])]
            predicted = result.payload.get("predicted_quality")
        else:
            tools = []
            predicted = None

        if not tools:
            for phase in (Phase.PLAN, Phase.MAKE, Phase.CHECK):
                recommendation = self._predict(PredictionKind.TOOL_RECOMMENDATION, phase.value)
                for entry in recommendation.value:
                    tool = entry.get("tool") if isinstance(entry, dict) else str(entry)
                    if tool and tool not in tools:
                        tools.append(tool)

        if predicted is None:
            prior_scores = [a.score for a in context.artifacts]
            predicted = 100.0 * mean(prior_scores) if prior_scores else 50.0
        predicted = max(0.0, min(100.0, float(predicted)))

        recommendations = context.payload(Phase.REFLECT).get("recommendations", [])
        return PhaseArtifact(
            phase=Phase.OPTIMIZE,
            payload={
                "recommended_tools": tools,
                "strategy_updates": list(recommendations),
                "predicted_quality": round(predicted, 4),
            },
            score=predicted / 100.0,
        )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _quality_figure(issue_count: int, test_count: int) -> float:
    """Quality in [0, 100]: issues cost 10 points off 50, tests add 5 to 80."""
    if issue_count > 0:
        return float(max(0, 50 - issue_count * 10))
    return float(min(100, 80 + test_count * 5))


def _slug(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:40] or "change"


def _normalize_change(change: Any) -> Dict[str, Any]:
    if isinstance(change, dict):
        return {
            "action": str(change.get("action", "modify")),
            "target": change.get("target"),
            "description": str(change.get("description", "")),
        }
    return {"action": "modify", "target": str(change), "description": ""}


def _derive_changes(plan: Dict[str, Any], goal: str) -> List[Dict[str, Any]]:
    """Deterministic change descriptors from the plan."""
    task_type = str(plan.get("task_type", "feature")).lower()
    changes = [
        {
            "action": "create",
            "target": f"{task_type}/{_slug(goal)}",
            "description": f"Create artifact for {task_type} work",
        }
    ]
    for pattern in plan.get("search_results", [])[: MAX_CHANGES - 1]:
        changes.append(
            {
                "action": "modify",
                "target": _slug(str(pattern)),
                "description": f"Apply known pattern: {str(pattern)[:80]}",
            }
        )
    return changes


def _historical_lessons(cycles: List[Cycle], min_score: float = 70.0) -> List[str]:
    """Lessons from successful recent cycles, best first."""
    successful = [
        c
        for c in cycles
        if c.success_score is not None and c.success_score > min_score and c.lessons_learned
    ]
    successful.sort(key=lambda c: c.success_score or 0.0, reverse=True)
    return [c.lessons_learned for c in successful[:3] if c.lessons_learned]


def _cycle_summary(cycle: Cycle) -> Dict[str, Any]:
    return {
        "cycle_id": cycle.id,
        "status": cycle.status.value,
        "success_score": cycle.success_score,
        "lessons_learned": cycle.lessons_learned,
    }


__all__ = ["PhaseExecutor", "CycleContext", "PHASE_TOOLS"]
