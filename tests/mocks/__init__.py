"""Mock utilities for testing."""

from .fakes import (
    FixedClock,
    PhaseFailureStore,
    ScriptedCapabilityProvider,
    ScriptedPredictor,
    SlowCapabilityProvider,
    full_tool_registry,
    make_artifact,
    unavailable,
)

__all__ = [
    "FixedClock",
    "PhaseFailureStore",
    "ScriptedCapabilityProvider",
    "ScriptedPredictor",
    "SlowCapabilityProvider",
    "full_tool_registry",
    "make_artifact",
    "unavailable",
]
