"""PMCR-O run command."""

from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from ...core.models import ExecutionResult
from ..runtime import get_runtime, parse_params, short_id

console = Console()


@click.command()
@click.argument("context")
@click.option("--parent", "parent_id", help="Parent cycle ID (e.g. a failed attempt)")
@click.option(
    "--param",
    "-p",
    "params",
    multiple=True,
    help="Task parameter as key=value (repeatable)",
)
@click.option("--event", "events", multiple=True, help="Extra event signal (repeatable)")
@click.pass_context
def run_command(
    ctx: click.Context,
    context: str,
    parent_id: Optional[str],
    params: Tuple[str, ...],
    events: Tuple[str, ...],
) -> None:
    """Run one full cycle for CONTEXT.

    Walks the goal through Plan, Make, Check, Reflect and Optimize and
    prints the outcome.

    Examples:
        pmcro run "Add retry logic to the exporter"
        pmcro run "Fix flaky login test" -p module=auth
    """
    runtime = get_runtime(ctx)
    result = runtime.orchestrator.run_full_cycle(
        context,
        parent_id=parent_id,
        parameters=parse_params(params),
        events=events,
    )
    _display_result(result)

    if not result.success:
        raise click.ClickException(f"Cycle failed: {result.error_message}")


def _display_result(result: ExecutionResult) -> None:
    table = Table(title="Cycle Result", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")

    status = result.final_status.value if result.final_status else "not created"
    table.add_row("Cycle", result.cycle_id or "-")
    table.add_row("Status", status)
    if result.final_score is not None:
        table.add_row("Score", f"{result.final_score:.2f}")
    if result.fallback_phases:
        table.add_row("Fallback phases", ", ".join(p.value for p in result.fallback_phases))
    if result.error_message:
        table.add_row("Error", result.error_message)
    table.add_row("Duration", f"{result.duration_seconds:.2f}s")
    console.print(table)

    for task in result.follow_up_tasks:
        console.print(
            f"[magenta]→[/magenta] Follow-up task {short_id(task.id)} queued: "
            f"{task.name} (priority {task.priority})"
        )
