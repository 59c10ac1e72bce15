"""
threadvault session - Session management commands.

Usage:
    threadvault session list --status active --channel telegram
    threadvault session info telegram:42
    threadvault session tag telegram:42 work urgent
    threadvault session archive telegram:42
    threadvault session export telegram:42 --format markdown
    threadvault session compact telegram:42
    threadvault session archive-old --days 30
"""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, TypeVar

import typer
from pydantic import ValidationError
from rich.markup import escape
from rich.table import Table

from threadvault.cli.output import (
    console,
    format_status,
    format_timestamp,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from threadvault.config import ConfigurationError, get_config
from threadvault.memory import (
    ExportFormat,
    SessionError,
    SessionListQuery,
    SessionManager,
    SessionMetadata,
    SessionNotFoundError,
    SessionStatus,
)

app = typer.Typer(
    name="session",
    help="Session management.",
)

T = TypeVar("T")


def _run(ctx: typer.Context, operation: Callable[[SessionManager], Awaitable[T]]) -> T:
    """Run an async operation against a freshly opened session manager."""
    workspace = (ctx.obj or {}).get("workspace")

    try:
        config = get_config()
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)

    async def runner() -> T:
        async with SessionManager.from_config(config, workspace=workspace) as manager:
            return await operation(manager)

    try:
        return asyncio.run(runner())
    except SessionNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(1)
    except SessionError as e:
        print_error(f"Session operation failed: {e}")
        raise typer.Exit(1)


def _sessions_table(sessions: list[SessionMetadata], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Key", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Messages", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Tags", style="dim")
    table.add_column("Updated", style="dim")

    for meta in sessions:
        table.add_row(
            meta.key,
            meta.name or "-",
            format_status(meta.status),
            str(meta.message_count),
            f"{meta.estimated_tokens:,}",
            ", ".join(meta.tags) or "-",
            format_timestamp(meta.updated_at),
        )
    return table


@app.command("list")
def list_sessions(
    ctx: typer.Context,
    status: Annotated[
        list[str] | None,
        typer.Option(
            "--status",
            "-s",
            help="Filter by status: active, archived, pinned (repeatable).",
        ),
    ] = None,
    channel: Annotated[
        str | None,
        typer.Option(
            "--channel",
            "-c",
            help="Filter by source channel.",
        ),
    ] = None,
    tag: Annotated[
        list[str] | None,
        typer.Option(
            "--tag",
            "-t",
            help="Filter by tag; any match counts (repeatable).",
        ),
    ] = None,
    query: Annotated[
        str | None,
        typer.Option(
            "--query",
            "-q",
            help="Case-insensitive search over key, name and tags.",
        ),
    ] = None,
    sort: Annotated[
        str,
        typer.Option(
            "--sort",
            help="Sort field: updated_at, created_at, message_count, last_accessed_at.",
        ),
    ] = "updated_at",
    order: Annotated[
        str,
        typer.Option(
            "--order",
            help="Sort order: asc or desc.",
        ),
    ] = "desc",
    limit: Annotated[
        int | None,
        typer.Option(
            "--limit",
            "-n",
            help="Maximum sessions to show.",
        ),
    ] = None,
    offset: Annotated[
        int,
        typer.Option(
            "--offset",
            help="Number of sessions to skip.",
        ),
    ] = 0,
) -> None:
    """List stored sessions."""
    try:
        list_query = SessionListQuery(
            status=[SessionStatus(s) for s in status] if status else None,
            channel=channel,
            tags=tag or None,
            search=query,
            sort_by=sort,
            sort_order=order,
            limit=limit,
            offset=offset,
        )
    except (ValueError, ValidationError) as e:
        print_error(f"Invalid filter: {e}")
        raise typer.Exit(1)

    result = _run(ctx, lambda manager: manager.list_sessions(list_query))

    if not result.items:
        console.print("[yellow]No sessions found.[/yellow]")
        return

    console.print(_sessions_table(result.items, "Sessions"))
    shown_to = result.offset + len(result.items)
    console.print(f"\n[dim]Showing {result.offset + 1}-{shown_to} of {result.total} sessions[/dim]")


@app.command()
def info(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key (e.g., 'telegram:42').")],
    messages: Annotated[
        int,
        typer.Option(
            "--messages",
            "-m",
            help="Number of recent messages to show.",
        ),
    ] = 5,
) -> None:
    """Show session details."""

    async def load(manager: SessionManager):
        detail = await manager.get_session(key)
        if detail is None:
            raise SessionNotFoundError(key)
        return detail, manager.get_window_stats(detail.messages), await manager.get_compaction_stats(key)

    detail, window, compaction = _run(ctx, load)

    console.print(f"[bold]Session:[/bold] [cyan]{detail.key}[/cyan]")
    console.print(f"[bold]Name:[/bold] {detail.name or '-'}")
    console.print(f"[bold]Status:[/bold] {format_status(detail.status)}")
    console.print(f"[bold]Channel:[/bold] {detail.source_channel} ({detail.source_chat_id})")
    console.print(f"[bold]Tags:[/bold] {', '.join(detail.tags) or '-'}")
    console.print(f"[bold]Created:[/bold] {format_timestamp(detail.created_at)}")
    console.print(f"[bold]Updated:[/bold] {format_timestamp(detail.updated_at)}")
    console.print(
        f"[bold]Messages:[/bold] {window.message_count} "
        f"(system {window.system}, user {window.user}, assistant {window.assistant}, "
        f"tool {window.tool})"
    )
    console.print(f"[bold]Estimated tokens:[/bold] {window.total_tokens:,}")
    console.print(f"[bold]Compactions:[/bold] {compaction.compaction_count}")

    if messages > 0 and detail.messages:
        console.print()
        for message in detail.messages[-messages:]:
            role = str(message.role).upper()
            style = "green" if role == "USER" else "blue" if role == "ASSISTANT" else "dim"
            text = message.text[:300] + "..." if len(message.text) > 300 else message.text
            console.print(f"[{style}]{role}:[/{style}] {escape(text)}")


@app.command()
def delete(
    ctx: typer.Context,
    keys: Annotated[list[str], typer.Argument(help="Session keys to delete.")],
    yes: Annotated[
        bool,
        typer.Option(
            "--yes",
            "-y",
            help="Skip confirmation.",
        ),
    ] = False,
) -> None:
    """Delete sessions and their files."""
    if not yes:
        confirmed = typer.confirm(f"Delete {len(keys)} session(s)?")
        if not confirmed:
            console.print("[dim]Cancelled[/dim]")
            return

    result = _run(ctx, lambda manager: manager.delete_sessions(keys))

    for key in result.success:
        print_success(f"Deleted: {key}")
    for key in result.failed:
        print_error(f"Failed to delete: {key}")

    if result.failed:
        raise typer.Exit(1)


@app.command()
def rename(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key.")],
    name: Annotated[str, typer.Argument(help="New display name.")],
) -> None:
    """Set a session's display name."""
    _run(ctx, lambda manager: manager.rename_session(key, name))
    print_success(f"Renamed {key} to '{name}'")


@app.command()
def tag(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key.")],
    tags: Annotated[list[str], typer.Argument(help="Tags to add.")],
) -> None:
    """Add tags to a session."""
    meta = _run(ctx, lambda manager: manager.tag_session(key, tags))
    print_success(f"Tags for {key}: {', '.join(meta.tags)}")


@app.command()
def untag(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key.")],
    tags: Annotated[list[str], typer.Argument(help="Tags to remove.")],
) -> None:
    """Remove tags from a session."""
    meta = _run(ctx, lambda manager: manager.untag_session(key, tags))
    print_success(f"Tags for {key}: {', '.join(meta.tags) or 'none'}")


@app.command()
def archive(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key.")],
) -> None:
    """Move a session to the archive tier."""
    _run(ctx, lambda manager: manager.archive_session(key))
    print_success(f"Archived: {key}")


@app.command()
def unarchive(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key.")],
) -> None:
    """Restore an archived session."""
    _run(ctx, lambda manager: manager.unarchive_session(key))
    print_success(f"Restored: {key}")


@app.command()
def pin(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key.")],
) -> None:
    """Pin a session so it is never archived automatically."""
    _run(ctx, lambda manager: manager.pin_session(key))
    print_success(f"Pinned: {key}")


@app.command()
def unpin(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key.")],
) -> None:
    """Unpin a session."""
    _run(ctx, lambda manager: manager.unpin_session(key))
    print_success(f"Unpinned: {key}")


@app.command()
def search(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="Text to search for.")],
    in_session: Annotated[
        str | None,
        typer.Option(
            "--in",
            help="Search the messages of this session instead of session metadata.",
        ),
    ] = None,
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            help="Maximum results to show.",
        ),
    ] = 20,
) -> None:
    """Search sessions, or messages within one session."""
    if in_session is None:
        sessions = _run(ctx, lambda manager: manager.search_sessions(query, limit=limit))
        if not sessions:
            console.print("[yellow]No matching sessions.[/yellow]")
            return
        console.print(_sessions_table(sessions, f"Sessions matching '{query}'"))
        return

    async def find(manager: SessionManager):
        if await manager.get_metadata(in_session) is None:
            raise SessionNotFoundError(in_session)
        return await manager.search_in_session(in_session, query)

    found = _run(ctx, find)
    if not found:
        console.print("[yellow]No matching messages.[/yellow]")
        return

    for message in found[:limit]:
        stamp = format_timestamp(message.timestamp)
        console.print(f"[dim]{stamp}[/dim] [bold]{message.role}:[/bold] {escape(message.text)}")
    console.print(f"\n[dim]{len(found)} matching message(s)[/dim]")


@app.command()
def export(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key.")],
    fmt: Annotated[
        str,
        typer.Option(
            "--format",
            "-f",
            help="Export format: json or markdown.",
        ),
    ] = "json",
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Write to a file instead of stdout.",
        ),
    ] = None,
) -> None:
    """Export a session."""
    try:
        export_format = ExportFormat(fmt)
    except ValueError:
        print_error(f"Invalid format: {fmt}. Use 'json' or 'markdown'.")
        raise typer.Exit(1)

    content = _run(ctx, lambda manager: manager.export_session(key, export_format))

    if output is None:
        console.print(content, markup=False, highlight=False)
        return

    output.write_text(content, encoding="utf-8")
    print_success(f"Exported {key} to {output}")


@app.command()
def stats(ctx: typer.Context) -> None:
    """Show aggregate session statistics."""
    result = _run(ctx, lambda manager: manager.get_stats())

    table = Table(title="Session Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Total sessions", str(result.total_sessions))
    table.add_row("Active", str(result.active_sessions))
    table.add_row("Archived", str(result.archived_sessions))
    table.add_row("Pinned", str(result.pinned_sessions))
    table.add_row("Total messages", f"{result.total_messages:,}")
    table.add_row("Estimated tokens", f"{result.total_tokens:,}")
    table.add_row("Oldest session", format_timestamp(result.oldest_session))
    table.add_row("Newest session", format_timestamp(result.newest_session))
    console.print(table)

    if result.by_channel:
        channels = Table(title="By Channel")
        channels.add_column("Channel", style="cyan")
        channels.add_column("Sessions", justify="right")
        for name, count in sorted(result.by_channel.items()):
            channels.add_row(name, str(count))
        console.print(channels)


@app.command("archive-old")
def archive_old(
    ctx: typer.Context,
    days: Annotated[
        int | None,
        typer.Option(
            "--days",
            "-d",
            help="Archive sessions not accessed for this many days (default: sessions.archive_after_days).",
        ),
    ] = None,
) -> None:
    """Archive sessions that have gone cold. Pinned sessions are skipped."""
    if days is None:
        days = get_config().sessions.archive_after_days
    if days is None:
        print_error("No --days given and sessions.archive_after_days is not configured.")
        raise typer.Exit(1)

    count = _run(ctx, lambda manager: manager.archive_old(days))
    if count:
        print_success(f"Archived {count} session(s) older than {days} days")
    else:
        print_info("No sessions to archive")


@app.command()
def compact(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key.")],
    instructions: Annotated[
        str | None,
        typer.Option(
            "--instructions",
            "-i",
            help="Extra focus for the summary.",
        ),
    ] = None,
) -> None:
    """Summarize older messages of a session, keeping the recent tail."""
    result, messages = _run(ctx, lambda manager: manager.compact_session(key, instructions))

    if not result.compacted:
        print_warning("Session too short to compact.")
        return

    print_success("Compaction complete!")
    console.print(f"  Tokens: {result.tokens_before:,} -> {result.tokens_after:,}")
    console.print(f"  Messages: {len(messages)}")
    console.print(f"  Saved: {result.tokens_before - result.tokens_after:,} tokens")


@app.command()
def trim(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Session key.")],
    max_messages: Annotated[
        int | None,
        typer.Option(
            "--max-messages",
            help="Window size (default: window.max_messages).",
        ),
    ] = None,
) -> None:
    """Trim a session to the sliding window, keeping system messages."""

    async def run(manager: SessionManager):
        before = len(await manager.load_messages(key))
        if before == 0 and await manager.get_metadata(key) is None:
            raise SessionNotFoundError(key)
        return before, await manager.emergency_trim(key, max_messages)

    before, trimmed = _run(ctx, run)
    if len(trimmed) == before:
        print_info("Session already fits the window.")
    else:
        print_success(f"Trimmed {key}: {before} -> {len(trimmed)} messages")


@app.command()
def rebuild(
    ctx: typer.Context,
    migrate: Annotated[
        bool,
        typer.Option(
            "--migrate",
            help="Only index files missing from the index instead of a full rebuild.",
        ),
    ] = False,
) -> None:
    """Rebuild the session index from the message files."""
    if migrate:
        count = _run(ctx, lambda manager: manager.store.migrate_legacy())
        print_success(f"Indexed {count} unindexed session(s)")
    else:
        count = _run(ctx, lambda manager: manager.store.rebuild_index())
        print_success(f"Index rebuilt with {count} session(s)")
