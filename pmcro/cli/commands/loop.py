"""PMCR-O loop command."""

import click
from rich.console import Console

from ...orchestrator.scheduler import CycleScheduler, SweepResult
from ..runtime import get_runtime, short_id

console = Console()


@click.command()
@click.option("--once", is_flag=True, help="Run a single sweep and exit")
@click.pass_context
def loop_command(ctx: click.Context, once: bool) -> None:
    """Run the scheduler loop.

    Each sweep records a self assessment, fires due time-based triggers
    and runs a batch of the most urgent pending tasks. Press Ctrl-C to
    stop; in-flight cycles finish or fail explicitly.

    Examples:
        pmcro loop --once           # One sweep
        pmcro loop                  # Run until interrupted
    """
    runtime = get_runtime(ctx)
    scheduler = CycleScheduler(runtime.orchestrator, runtime.config)

    if once:
        _display_sweep(scheduler.run_once())
        return

    interval = runtime.config.scheduler.interval
    console.print(f"[bold]Scheduler running[/bold] (every {interval}, Ctrl-C to stop)")
    scheduler.start()
    try:
        while not scheduler.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping scheduler...[/yellow]")
        scheduler.stop()
        console.print("[green]✓[/green] Scheduler stopped")


def _display_sweep(sweep: SweepResult) -> None:
    if sweep.assessment is not None:
        console.print(f"Assessment score: {sweep.assessment.overall_score:.2f}")
    for task in sweep.swept_tasks:
        console.print(f"[magenta]→[/magenta] Trigger queued {short_id(task.id)}: {task.name}")
    if not sweep.results:
        console.print("[dim]No pending tasks[/dim]")
    for result in sweep.results:
        if result.success:
            console.print(
                f"[green]✓[/green] Cycle {short_id(result.cycle_id)} completed "
                f"({result.final_score:.2f})"
            )
        else:
            console.print(
                f"[red]✗[/red] Cycle {short_id(result.cycle_id)} failed: {result.error_message}"
            )
    if sweep.requeued:
        console.print(f"Requeued {len(sweep.requeued)} task(s)")
    if sweep.exhausted:
        console.print(f"[red]{len(sweep.exhausted)} task(s) out of retries[/red]")
