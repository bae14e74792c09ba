"""PMCR-O tasks command."""

import click
from rich.console import Console
from rich.table import Table

from ...core.cycle_state import TaskStatus
from ..runtime import get_runtime, short_id

console = Console()

STATUS_STYLES = {
    TaskStatus.PENDING: "yellow",
    TaskStatus.IN_PROGRESS: "blue",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
}


@click.command()
@click.option(
    "--status",
    "-s",
    type=click.Choice(["all"] + [s.value for s in TaskStatus]),
    default="all",
    help="Filter tasks by status",
)
@click.pass_context
def tasks_command(ctx: click.Context, status: str) -> None:
    """List tasks, most urgent first.

    Examples:
        pmcro tasks                 # All tasks
        pmcro tasks -s pending      # Only pending tasks
    """
    runtime = get_runtime(ctx)
    tasks = runtime.store.list_tasks(None if status == "all" else TaskStatus(status))

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        console.print("Use 'pmcro submit' to add tasks to the queue")
        return

    table = Table(title="Tasks")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Priority", style="magenta")
    table.add_column("Status")
    table.add_column("Retries", style="dim")
    table.add_column("Kind", style="dim")
    table.add_column("Name", style="white")

    for task in tasks:
        style = STATUS_STYLES.get(task.status, "white")
        table.add_row(
            short_id(task.id),
            str(task.priority),
            f"[{style}]{task.status.value}[/{style}]",
            str(task.retry_count),
            task.kind,
            task.name,
        )

    console.print(table)
