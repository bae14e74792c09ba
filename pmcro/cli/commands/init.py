"""PMCR-O init command."""

import click
from rich.console import Console

from ...config.loader import create_default_config, save_config
from ...config.models import TriggerSeed
from ...core.exceptions import ConfigurationError
from ...core.models import TriggerType
from ..runtime import project_dir

console = Console()

GITIGNORE = """# PMCR-O generated files
logs/
state/
*.tmp
"""


@click.command()
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Force initialization even if .pmcro directory already exists",
)
def init_command(force: bool) -> None:
    """Initialize PMCR-O in the current project.

    Creates a .pmcro directory with a default configuration, including
    a quality-threshold and a daily evolution trigger.

    Examples:
        pmcro init                # Initialize with default settings
        pmcro init --force        # Reinitialize existing project
    """
    pmcro_dir = project_dir()

    if pmcro_dir.exists() and not force:
        console.print(
            f"[yellow]PMCR-O already initialized in {pmcro_dir.parent}[/yellow]\n"
            "Use --force to reinitialize"
        )
        return

    try:
        pmcro_dir.mkdir(exist_ok=True)
        (pmcro_dir / "logs").mkdir(exist_ok=True)
        (pmcro_dir / "state").mkdir(exist_ok=True)

        config_path = pmcro_dir / "config.yaml"
        if not config_path.exists() or force:
            config = create_default_config()
            config.triggers.seeds = _default_seeds()
            save_config(config, config_path)

        gitignore_path = pmcro_dir / ".gitignore"
        if not gitignore_path.exists() or force:
            gitignore_path.write_text(GITIGNORE, encoding="utf-8")

    except (OSError, ConfigurationError) as e:
        console.print(f"[red]Failed to initialize PMCR-O:[/red] {e}")
        raise click.ClickException(f"Initialization failed: {e}")

    console.print(f"[green]✓[/green] PMCR-O initialized in {pmcro_dir.parent}")
    console.print(f"[dim]Configuration:[/dim] {config_path}")
    console.print("\n[bold]Next steps:[/bold]")
    console.print("1. Review and customize .pmcro/config.yaml")
    console.print('2. Run a cycle: pmcro run "Improve error messages"')
    console.print("3. Queue work: pmcro submit NAME, then pmcro loop --once")


def _default_seeds():
    """Triggers written into a fresh configuration."""
    return [
        TriggerSeed(
            name="Quality below threshold",
            description="Average cycle quality dropped below the threshold",
            trigger_type=TriggerType.QUALITY_THRESHOLD,
            conditions={"threshold": 75.0, "window": 10, "min_cycles": 10},
            actions={"focus": "quality", "review_recent_cycles": 10},
        ),
        TriggerSeed(
            name="Daily self review",
            description="Periodic review of strategies and tool usage",
            trigger_type=TriggerType.TIME_BASED,
            conditions={"interval": "24h"},
            actions={"focus": "strategy"},
        ),
    ]
