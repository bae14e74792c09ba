"""Shared wiring for CLI commands."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler

from ..config.loader import load_config
from ..config.models import PMCROConfig
from ..core.prediction import RuleBasedPredictor
from ..core.state_store import CycleStateStore
from ..orchestrator.cycle_orchestrator import CycleOrchestrator
from ..tracking.activity_logger import ActivityLogger

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


@dataclass
class Runtime:
    """Configured collaborators for one CLI invocation."""

    config: PMCROConfig
    store: CycleStateStore
    orchestrator: CycleOrchestrator
    activity_logger: ActivityLogger


def setup_logging(level: str, console: Optional[Console] = None) -> None:
    """Route stdlib logging through rich."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    logging.basicConfig(
        level=LOG_LEVELS.get(level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )


def get_runtime(ctx: click.Context) -> Runtime:
    """Build (once per invocation) the configured store and orchestrator."""
    obj = ctx.ensure_object(dict)
    runtime = obj.get("runtime")
    if runtime is not None:
        return runtime

    config = load_config(project_config_path=obj.get("config"))
    setup_logging("DEBUG" if obj.get("verbose") else config.logging.level)

    activity_logger = ActivityLogger(config.get_log_dir())
    store = CycleStateStore(config.get_state_dir())
    orchestrator = CycleOrchestrator.from_config(
        config,
        store=store,
        prediction_service=RuleBasedPredictor(),
        activity_logger=activity_logger,
    )

    runtime = Runtime(config, store, orchestrator, activity_logger)
    obj["runtime"] = runtime
    return runtime


def parse_params(values: Tuple[str, ...]) -> Dict[str, Any]:
    """Parse repeated ``key=value`` options into a dict.

    Raises:
        click.BadParameter: If a value has no '='
    """
    params: Dict[str, Any] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected key=value, got '{item}'", param_hint="--param")
        params[key.strip()] = value
    return params


def short_id(record_id: Optional[str]) -> str:
    """First 8 characters of an identifier."""
    return record_id[:8] if record_id else "-"


def project_dir() -> Path:
    """Directory holding the project's .pmcro folder."""
    return Path.cwd() / ".pmcro"
