"""
PMCR-O: Plan, Make, Check, Reflect, Optimize cycle orchestrator

A bounded, auditable workflow engine that drives a unit of work through five
ordered phases, persists every phase artifact, scores the outcome and spawns
follow-up work when evolution triggers fire.
"""

__version__ = "0.1.0"

from pmcro.core.exceptions import PMCROError

__all__ = ["PMCROError", "__version__"]
