"""PMCR-O trigger commands."""

from typing import List

import click
from rich.console import Console
from rich.table import Table

from ...core.exceptions import TriggerEvaluationError
from ...core.models import Task
from ..runtime import get_runtime, short_id

console = Console()


@click.group(invoke_without_command=True)
@click.pass_context
def triggers_group(ctx: click.Context) -> None:
    """Inspect and fire evolution triggers."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@triggers_group.command("list")
@click.option("--active", is_flag=True, help="Only active triggers")
@click.pass_context
def list_command(ctx: click.Context, active: bool) -> None:
    """List evolution triggers."""
    runtime = get_runtime(ctx)
    triggers = runtime.store.list_triggers(active_only=active)

    if not triggers:
        console.print("[yellow]No triggers found[/yellow]")
        console.print("Seed triggers under 'triggers.seeds' in .pmcro/config.yaml")
        return

    table = Table(title="Evolution Triggers")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Type", style="magenta")
    table.add_column("Active")
    table.add_column("Fired", style="green")
    table.add_column("Last fired", style="dim")

    for trigger in triggers:
        table.add_row(
            short_id(trigger.id),
            trigger.name,
            trigger.trigger_type.value,
            "yes" if trigger.is_active else "[dim]no[/dim]",
            str(trigger.trigger_count),
            trigger.last_triggered_at.isoformat() if trigger.last_triggered_at else "-",
        )

    console.print(table)


@triggers_group.command("evaluate")
@click.pass_context
def evaluate_command(ctx: click.Context) -> None:
    """Run the periodic (time-based) trigger sweep now."""
    runtime = get_runtime(ctx)
    tasks = runtime.orchestrator.trigger_evaluator.evaluate()
    _display_tasks(tasks)


@triggers_group.command("notify")
@click.argument("trigger")
@click.pass_context
def notify_command(ctx: click.Context, trigger: str) -> None:
    """Signal an event-driven TRIGGER (ID, ID prefix or name)."""
    runtime = get_runtime(ctx)
    matches = [
        t
        for t in runtime.store.list_triggers()
        if t.id.startswith(trigger) or t.name == trigger
    ]
    if len(matches) != 1:
        raise click.ClickException(
            f"Trigger not found: {trigger}" if not matches
            else f"Ambiguous trigger '{trigger}' matches {len(matches)} triggers"
        )

    try:
        tasks = runtime.orchestrator.trigger_evaluator.notify(matches[0].id)
    except TriggerEvaluationError as e:
        raise click.ClickException(str(e))
    _display_tasks(tasks)


def _display_tasks(tasks: List[Task]) -> None:
    if not tasks:
        console.print("[dim]No triggers fired[/dim]")
        return
    for task in tasks:
        console.print(
            f"[green]✓[/green] Task {short_id(task.id)} queued: "
            f"{task.name} (priority {task.priority})"
        )
