"""Shared pytest fixtures for PMCR-O tests."""

from pathlib import Path
from typing import Generator

import pytest

from pmcro.config.models import PMCROConfig
from pmcro.core.capabilities import NullCapabilityProvider
from pmcro.core.cycle_state import PHASE_ORDER
from pmcro.core.models import Cycle
from pmcro.core.state_store import CycleStateStore
from pmcro.orchestrator.cycle_orchestrator import CycleOrchestrator
from pmcro.orchestrator.phase_executor import PhaseExecutor
from pmcro.orchestrator.quality_scorer import QualityScorer
from pmcro.orchestrator.trigger_evaluator import TriggerEvaluator
from pmcro.tracking.activity_logger import ActivityLogger
from tests.mocks import FixedClock, make_artifact


# ============================================================================
# Environment
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_global_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the user's global configuration out of every test."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))


@pytest.fixture
def clock() -> FixedClock:
    """Manually advanced clock starting at 2024-01-01 12:00 UTC."""
    return FixedClock()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Empty state directory."""
    return tmp_path / "state"


@pytest.fixture
def store(state_dir: Path, clock: FixedClock) -> Generator[CycleStateStore, None, None]:
    """State store on a temporary directory with a fixed clock."""
    yield CycleStateStore(state_dir, clock=clock)


@pytest.fixture
def config() -> PMCROConfig:
    """Default configuration with short phase timeouts."""
    config = PMCROConfig()
    for phase in PHASE_ORDER:
        setattr(config.orchestrator.phase_timeouts, phase.value, "10s")
    return config


@pytest.fixture
def activity_logger(tmp_path: Path) -> ActivityLogger:
    """Activity logger writing under a temporary directory."""
    return ActivityLogger(tmp_path / "logs", session_id="test-session")


@pytest.fixture
def orchestrator(
    store: CycleStateStore, config: PMCROConfig, clock: FixedClock
) -> CycleOrchestrator:
    """Orchestrator with no capability provider (all phases fall back)."""
    return CycleOrchestrator(
        store,
        phase_executor=PhaseExecutor(NullCapabilityProvider()),
        scorer=QualityScorer(clock=clock),
        trigger_evaluator=TriggerEvaluator(store, config.triggers, clock=clock),
        config=config,
    )


# ============================================================================
# Helpers
# ============================================================================


def complete_cycle_with_score(
    store: CycleStateStore, score: float, context: str = "history"
) -> Cycle:
    """Create a COMPLETED cycle with the given score."""
    cycle = store.create_cycle(context)
    for phase in PHASE_ORDER:
        store.record_phase(cycle.id, phase, make_artifact(phase))
    store.complete_cycle(cycle.id, score, f"lessons for {context}")
    return store.get_cycle(cycle.id)


@pytest.fixture
def completed_cycles(store: CycleStateStore, clock: FixedClock):
    """Factory creating completed cycles one minute apart."""

    def factory(scores):
        cycles = []
        for i, score in enumerate(scores):
            clock.advance(minutes=1)
            cycles.append(complete_cycle_with_score(store, score, f"cycle {i}"))
        return cycles

    return factory
