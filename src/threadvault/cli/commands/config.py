"""
threadvault config - Configuration inspection commands.

Usage:
    threadvault config show
    threadvault config show compaction
    threadvault config show --sources
    threadvault config path
    threadvault config validate
"""

import json
from typing import Annotated

import typer
import yaml
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from threadvault.cli.output import console, print_error, print_success
from threadvault.config import ConfigurationError, get_config_sources, load_config
from threadvault.config.loader import collect_layers
from threadvault.storage.paths import get_global_config_path, get_threadvault_home

app = typer.Typer(
    name="config",
    help="Configuration inspection.",
)


def _dotted_keys(data: dict, prefix: str = "") -> list[str]:
    keys = []
    for key, value in data.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            keys.extend(_dotted_keys(value, f"{path}."))
        else:
            keys.append(path)
    return keys


@app.command()
def show(
    section: Annotated[
        str | None,
        typer.Argument(
            help="Config section to show (e.g., 'compaction', 'sessions').",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON.",
        ),
    ] = False,
    sources: Annotated[
        bool,
        typer.Option(
            "--sources",
            help="Show configuration source files.",
        ),
    ] = False,
) -> None:
    """Show the effective (merged) configuration."""
    if sources:
        try:
            layers = collect_layers()
        except ConfigurationError as e:
            print_error(f"Configuration error: {e}")
            raise typer.Exit(1)

        table = Table(title="Configuration Sources")
        table.add_column("Layer", style="cyan")
        table.add_column("Path", style="green")
        table.add_column("Keys set")

        for layer in layers:
            keys = ", ".join(_dotted_keys(layer.data)) or "[dim]none[/dim]"
            table.add_row(layer.name, str(layer.path) if layer.path else "-", keys)

        console.print(table)
        return

    try:
        config_dict = load_config().model_dump(mode="json")
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)

    if section:
        if section not in config_dict:
            print_error(f"Section '{section}' not found in configuration.")
            raise typer.Exit(1)
        config_dict = config_dict[section]

    if json_output:
        console.print(Syntax(json.dumps(config_dict, indent=2), "json", theme="monokai"))
        return

    output = yaml.dump(config_dict, default_flow_style=False, sort_keys=False, allow_unicode=True)
    if section:
        console.print(Panel(Syntax(output, "yaml", theme="monokai"), title=f"[cyan]{section}[/cyan]"))
    else:
        console.print(Syntax(output, "yaml", theme="monokai"))


@app.command()
def path() -> None:
    """Show where configuration is read from."""
    console.print(f"[bold]Home:[/bold] {get_threadvault_home()}")
    console.print(f"[bold]Global config:[/bold] {get_global_config_path()}")

    project = get_config_sources()["project"]
    console.print(f"[bold]Project config:[/bold] {project or '[dim]not found[/dim]'}")


@app.command()
def validate() -> None:
    """Validate the merged configuration."""
    try:
        load_config()
    except ConfigurationError as e:
        print_error(f"Configuration is invalid: {e}")
        raise typer.Exit(1)

    print_success("Configuration is valid.")
