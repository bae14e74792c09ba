"""PMCR-O cycles command."""

from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ...core.models import Cycle
from ..runtime import get_runtime, short_id

console = Console()


@click.command()
@click.argument("cycle_id", required=False)
@click.option("--limit", "-n", default=20, show_default=True, help="Cycles to list")
@click.pass_context
def cycles_command(ctx: click.Context, cycle_id: Optional[str], limit: int) -> None:
    """List recent cycles, or show one cycle in detail.

    CYCLE_ID may be a unique prefix of the identifier.

    Examples:
        pmcro cycles                # Recent cycles
        pmcro cycles 3f2a9c1e       # One cycle with its phase artifacts
    """
    runtime = get_runtime(ctx)

    if cycle_id:
        cycle = _resolve_cycle(runtime.store.list_cycles(), cycle_id)
        _display_cycle(cycle, runtime.store.get_cycle_metrics(cycle.id))
        return

    cycles = runtime.store.get_recent_cycles(limit)
    if not cycles:
        console.print("[yellow]No cycles found[/yellow]")
        console.print("Use 'pmcro run CONTEXT' to run a cycle")
        return

    table = Table(title="Recent Cycles")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status", style="yellow")
    table.add_column("Score", style="green")
    table.add_column("Phases", style="dim")
    table.add_column("Fallback", style="magenta")
    table.add_column("Context", style="white")

    for cycle in cycles:
        table.add_row(
            short_id(cycle.id),
            cycle.status.value,
            f"{cycle.success_score:.2f}" if cycle.success_score is not None else "-",
            str(len(cycle.phase_artifacts)),
            "yes" if cycle.used_fallback else "",
            cycle.context,
        )

    console.print(table)


def _resolve_cycle(cycles, cycle_id: str) -> Cycle:
    matches = [c for c in cycles if c.id.startswith(cycle_id)]
    if not matches:
        raise click.ClickException(f"Cycle not found: {cycle_id}")
    if len(matches) > 1:
        raise click.ClickException(
            f"Ambiguous cycle ID '{cycle_id}' matches {len(matches)} cycles"
        )
    return matches[0]


def _display_cycle(cycle: Cycle, metrics: dict) -> None:
    score = metrics.get("success_score")
    summary = [
        f"[bold]Status:[/bold] {metrics['status']}",
        f"[bold]Score:[/bold] {score:.2f}" if score is not None else "[bold]Score:[/bold] -",
        f"[bold]Duration:[/bold] {metrics['duration_minutes']:.2f} min",
        f"[bold]Lessons:[/bold] {metrics['lessons_learned']}",
    ]
    if cycle.parent_cycle_id:
        summary.append(f"[bold]Parent:[/bold] {cycle.parent_cycle_id}")
    console.print(Panel("\n".join(summary), title=f"Cycle {cycle.id}"))

    table = Table(title="Phases")
    table.add_column("Phase", style="cyan")
    table.add_column("Score", style="green")
    table.add_column("Tool", style="dim")
    table.add_column("Fallback", style="magenta")

    for phase, artifact in cycle.phase_artifacts.items():
        table.add_row(
            phase.value,
            f"{artifact.score:.2f}",
            artifact.tool_name or "-",
            artifact.fallback_reason or ("yes" if artifact.used_fallback else ""),
        )
    console.print(table)
