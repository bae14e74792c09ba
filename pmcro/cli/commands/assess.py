"""PMCR-O assess command."""

import click
from rich.console import Console
from rich.panel import Panel

from ..runtime import get_runtime

console = Console()


@click.command()
@click.option("--save/--no-save", default=True, help="Record the assessment")
@click.pass_context
def assess_command(ctx: click.Context, save: bool) -> None:
    """Assess quality across the recent completed cycles."""
    runtime = get_runtime(ctx)
    cycles = runtime.store.get_completed_cycles(runtime.config.assessment.window)
    assessment = runtime.orchestrator.scorer.assess(cycles)

    if save:
        runtime.store.save_assessment(assessment)
        runtime.activity_logger.log_assessment(
            assessment.id, assessment.overall_score, assessment.requires_improvement
        )

    color = "red" if assessment.requires_improvement else "green"
    lines = [
        f"[bold]Overall score:[/bold] [{color}]{assessment.overall_score:.2f}[/{color}]"
        f" (floor {assessment.quality_floor:.0f})",
        f"[bold]Cycles assessed:[/bold] {assessment.metrics.get('completed_cycles', 0)}",
    ]
    for title, items in (
        ("Strengths", assessment.strengths),
        ("Weaknesses", assessment.weaknesses),
        ("Improvement areas", assessment.improvement_areas),
    ):
        if items:
            lines.append(f"[bold]{title}:[/bold] " + ", ".join(items))
    if assessment.requires_improvement:
        lines.append("[yellow]Improvement required[/yellow]")

    console.print(Panel("\n".join(lines), title="Self Assessment"))
