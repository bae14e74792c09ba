"""Main CLI entry point for PMCR-O."""

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from ..core.exceptions import PMCROError
from .commands.assess import assess_command
from .commands.config import config_command
from .commands.cycles import cycles_command
from .commands.init import init_command
from .commands.loop import loop_command
from .commands.run import run_command
from .commands.submit import submit_command
from .commands.tasks import tasks_command
from .commands.triggers import triggers_group

console = Console()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: Optional[Path]) -> None:
    """PMCR-O: Plan, Make, Check, Reflect, Optimize cycle orchestrator.

    Drives goals through five ordered phases, scores each cycle and queues
    follow-up work when evolution triggers fire.

    \b
    Examples:
        pmcro init                      # Initialize in current project
        pmcro run "Improve test coverage"  # Run one cycle
        pmcro submit "Write API docs"   # Queue a task
        pmcro loop --once               # Run a batch of queued tasks
        pmcro cycles                    # Recent cycles
        pmcro triggers list             # Evolution triggers
        pmcro assess                    # Self assessment
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = config

    if verbose:
        console.print("[dim]PMCR-O CLI starting with verbose output enabled[/dim]")


cli.add_command(init_command, name="init")
cli.add_command(run_command, name="run")
cli.add_command(submit_command, name="submit")
cli.add_command(tasks_command, name="tasks")
cli.add_command(cycles_command, name="cycles")
cli.add_command(triggers_group, name="triggers")
cli.add_command(assess_command, name="assess")
cli.add_command(loop_command, name="loop")
cli.add_command(config_command, name="config")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli(standalone_mode=False)
    except click.exceptions.Abort:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except PMCROError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
