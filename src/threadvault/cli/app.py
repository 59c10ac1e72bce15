"""
Root ``threadvault`` command.

Global options (workspace, verbosity) are parsed here and handed to the
``session`` and ``config`` groups through ``ctx.obj``.
"""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from threadvault import __version__
from threadvault.cli.commands import config, session
from threadvault.cli.output import print_info
from threadvault.config import ConfigurationError, get_config

app = typer.Typer(
    name="threadvault",
    help="Session persistence and context retention for conversational agents.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        print_info(f"threadvault version [green]{__version__}[/green]")
        raise typer.Exit()


def setup_logging(verbose: bool) -> None:
    """Route library logging to stderr at the configured level."""
    level = "DEBUG" if verbose else "WARNING"
    if not verbose:
        try:
            level = get_config().logging.level
        except ConfigurationError:
            pass  # Reported by the command that loads the config

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# noinspection PyUnusedLocal
@app.callback()
def main_callback(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    workspace: Annotated[
        Path | None,
        typer.Option(
            "--workspace",
            "-w",
            help="Workspace directory holding .sessions (default: sessions.workspace).",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
) -> None:
    """
    [bold blue]threadvault[/bold blue] - Session persistence and context retention

    Inspect, organize, compact and archive stored conversation sessions.
    Use [bold]threadvault --help[/bold] to see all commands.
    """
    setup_logging(verbose)
    ctx.obj = {"workspace": workspace}


app.add_typer(session.app, name="session")
app.add_typer(config.app, name="config")

