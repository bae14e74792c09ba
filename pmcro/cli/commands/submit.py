"""PMCR-O submit command."""

from typing import Optional, Tuple

import click
from pydantic import ValidationError
from rich.console import Console

from ...core.models import Task
from ..runtime import get_runtime, parse_params, short_id

console = Console()


@click.command()
@click.argument("name")
@click.option("--description", "-d", default="", help="What the task should achieve")
@click.option("--kind", "-k", default="general", help="Free-form task classification")
@click.option("--priority", type=int, help="Priority (higher is more urgent)")
@click.option(
    "--param",
    "-p",
    "params",
    multiple=True,
    help="Task parameter as key=value (repeatable)",
)
@click.pass_context
def submit_command(
    ctx: click.Context,
    name: str,
    description: str,
    kind: str,
    priority: Optional[int],
    params: Tuple[str, ...],
) -> None:
    """Queue a task for the scheduler.

    Examples:
        pmcro submit "Write API docs" -d "Document the export endpoints"
        pmcro submit "Fix login bug" --priority 8 -p module=auth
    """
    runtime = get_runtime(ctx)
    if priority is None:
        priority = runtime.config.triggers.default_task_priority

    try:
        task = Task(
            name=name,
            description=description,
            kind=kind,
            priority=priority,
            parameters=parse_params(params),
        )
    except ValidationError as e:
        raise click.ClickException(f"Invalid task: {e}")

    runtime.store.save_task(task)
    runtime.activity_logger.log_task_queued(task.id, task.name, task.priority)

    console.print(f"[green]✓[/green] Task {short_id(task.id)} queued: {task.name}")
    console.print("Use 'pmcro tasks' to see queued tasks")
    console.print("Use 'pmcro loop --once' to run a batch")
