"""Deterministic fakes for the capability, prediction and storage boundaries."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from pmcro.core.capabilities import CapabilityProvider, LocalToolRegistry, ToolResult
from pmcro.core.cycle_state import Phase
from pmcro.core.exceptions import PersistenceError, ToolUnavailableError
from pmcro.core.models import PhaseArtifact
from pmcro.core.prediction import Prediction, PredictionKind, PredictionService
from pmcro.core.state_store import CycleStateStore

Response = Union[Dict[str, Any], ToolResult, Exception, Callable[[Dict[str, Any]], Any]]


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by a timedelta given as keyword arguments."""
        with self._lock:
            self.now = self.now + timedelta(**kwargs)
            return self.now


class ScriptedCapabilityProvider(CapabilityProvider):
    """Provider answering from a tool -> response table.

    A response may be a payload dict, a ToolResult, an exception to raise,
    or a callable taking the params. Unknown tools are unavailable.
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None):
        self.responses: Dict[str, Response] = dict(responses or {})
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def invoke(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        self.calls.append((tool_name, params))
        response = self.responses.get(tool_name)
        if response is None:
            return ToolResult.unavailable(f"scripted: {tool_name} not available")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(params)
        if isinstance(response, ToolResult):
            return response
        return ToolResult.success(dict(response))

    def called_tools(self) -> List[str]:
        return [name for name, _ in self.calls]


class SlowCapabilityProvider(CapabilityProvider):
    """Provider that blocks on one tool until released."""

    def __init__(self, slow_tool: str, delay: float = 5.0):
        self.slow_tool = slow_tool
        self.delay = delay
        self.release = threading.Event()

    def invoke(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        if tool_name == self.slow_tool:
            self.release.wait(self.delay)
        return ToolResult.unavailable("slow provider has no tools")


class ScriptedPredictor(PredictionService):
    """Prediction service returning fixed answers per kind."""

    def __init__(
        self,
        answers: Optional[Dict[PredictionKind, Any]] = None,
        confidence: float = 0.9,
        error: Optional[Exception] = None,
    ):
        self.answers = dict(answers or {})
        self.confidence = confidence
        self.error = error
        self.calls: List[Tuple[PredictionKind, str]] = []

    def predict(self, kind: PredictionKind, text: str) -> Optional[Prediction]:
        self.calls.append((kind, text))
        if self.error is not None:
            raise self.error
        if kind not in self.answers:
            return None
        return Prediction(kind=kind, value=self.answers[kind], confidence=self.confidence)


class PhaseFailureStore(CycleStateStore):
    """State store that cannot durably record selected phases."""

    def __init__(self, *args: Any, fail_phases: Optional[Set[Phase]] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.fail_phases: Set[Phase] = set(fail_phases or [])

    def record_phase(self, cycle_id: str, phase: Phase, artifact: PhaseArtifact) -> bool:
        if Phase(phase) in self.fail_phases:
            raise PersistenceError(f"Injected write failure for {Phase(phase).value}")
        return super().record_phase(cycle_id, phase, artifact)


def make_artifact(phase: Phase, score: float = 0.8, **payload: Any) -> PhaseArtifact:
    """Artifact with a fixed score."""
    return PhaseArtifact(phase=phase, score=score, payload=payload)


def full_tool_registry(issues: Optional[List[str]] = None) -> LocalToolRegistry:
    """Registry serving every phase tool with canned payloads."""
    registry = LocalToolRegistry()
    registry.register(
        "semantic_search",
        lambda params: {"results": ["use small commits"], "approach": "incremental"},
    )
    registry.register(
        "apply_changes",
        lambda params: {
            "changes": [{"action": "modify", "target": "src/app.py", "description": "edit"}],
            "success_likelihood": 0.9,
        },
    )
    registry.register(
        "get_errors",
        lambda params: {"issues": list(issues or []), "tests": ["test_app"]},
    )
    registry.register(
        "sequential_thinking",
        lambda params: {"insights": ["changes were small"], "recommendations": []},
    )
    registry.register(
        "recommend_tools",
        lambda params: {"recommended_tools": ["get_errors"], "predicted_quality": 90.0},
    )
    return registry


def unavailable(message: str = "offline") -> ToolUnavailableError:
    """Exception a provider raises when a tool cannot be reached."""
    return ToolUnavailableError(message)
