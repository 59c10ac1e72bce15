"""CLI command modules."""

from threadvault.cli.commands import config, session

__all__ = ["config", "session"]
