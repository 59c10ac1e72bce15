"""
Output formatting utilities for the CLI.

Provides consistent output formatting across all CLI commands.
"""

from datetime import datetime

from rich.console import Console

# Global console instance
console = Console()

STATUS_STYLES = {
    "active": "green",
    "archived": "dim",
    "pinned": "yellow",
}


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]i[/blue] {message}")


def format_timestamp(value: datetime | None) -> str:
    """Format a timestamp for table cells."""
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


def format_status(status: str) -> str:
    """Color a session status for display."""
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"
