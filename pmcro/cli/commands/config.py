"""PMCR-O config command."""

from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.syntax import Syntax

from ...config.loader import get_config_paths, load_config, validate_config_file

console = Console()


@click.command()
@click.option(
    "--validate",
    "validate_path",
    type=click.Path(path_type=Path),
    help="Validate a configuration file instead of showing the effective config",
)
@click.pass_context
def config_command(ctx: click.Context, validate_path: Optional[Path]) -> None:
    """Show the effective configuration, or validate a file.

    Examples:
        pmcro config                               # Effective configuration
        pmcro config --validate .pmcro/config.yaml # Check a file
    """
    if validate_path is not None:
        report = validate_config_file(validate_path)
        for warning in report["warnings"]:
            console.print(f"[yellow]Warning:[/yellow] {warning}")
        if not report["valid"]:
            for error in report["errors"]:
                console.print(f"[red]✗[/red] {error}")
            raise click.ClickException(f"Invalid configuration: {validate_path}")
        console.print(f"[green]✓[/green] {validate_path} is valid")
        return

    config = load_config(project_config_path=ctx.ensure_object(dict).get("config"))
    for name, path in get_config_paths().items():
        found = "found" if path and path.exists() else "not found"
        console.print(f"[dim]{name}:[/dim] {path or '-'} ({found})")

    text = yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False)
    console.print(Syntax(text, "yaml"))
