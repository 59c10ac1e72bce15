"""
Session manager for threadvault.

Provides the main interface for managing sessions, compaction and the
context window on top of the session store.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from threadvault.config import Config, get_config
from threadvault.memory.compaction import CompletionCapability, SessionCompactor
from threadvault.memory.context import SlidingWindow, TokenCounter
from threadvault.memory.events import EventEmitter, EventHandler, SessionEvent
from threadvault.memory.exceptions import SessionNotFoundError, SessionStorageError
from threadvault.memory.models import (
    BatchDeleteResult,
    CompactionCheck,
    CompactionResult,
    CompactionStats,
    ContextUsage,
    ExportFormat,
    Message,
    PaginatedResult,
    SessionDetail,
    SessionListQuery,
    SessionMetadata,
    SessionStats,
    SessionStatus,
    WindowStats,
)
from threadvault.memory.storage import SessionStore
from threadvault.providers import ProviderManager

logger = logging.getLogger(__name__)

COMPACTION_STATS_KEY = "compaction"


class SessionManager:
    """Main interface for managing sessions.

    Provides:
    - Session queries and lifecycle operations
    - Lifecycle events for external subscribers
    - Compaction bound to a session key
    - Sliding window statistics and trimming

    The manager keeps no persistent state of its own beyond the store it wraps.
    """

    def __init__(
        self,
        store: SessionStore,
        compactor: SessionCompactor | None = None,
        window: SlidingWindow | None = None,
        emitter: EventEmitter | None = None,
    ):
        """Initialize the session manager.

        Args:
            store: Session store to operate on.
            compactor: Compaction engine. Defaults to an extractive-capable engine.
            window: Sliding window. Defaults to one sharing the store's counter.
            emitter: Event emitter. A private one is created if not provided.
        """
        self.store = store
        self.compactor = compactor or SessionCompactor(counter=store.counter)
        self.window = window or SlidingWindow(counter=store.counter)
        self.events = emitter or EventEmitter()

    @classmethod
    def from_config(
        cls,
        config: Config | None = None,
        workspace: Path | str | None = None,
        provider: CompletionCapability | None = None,
    ) -> "SessionManager":
        """Build a manager wired from configuration.

        Args:
            config: Configuration. Defaults to the merged global configuration.
            workspace: Workspace override. Defaults to ``sessions.workspace``.
            provider: Completion capability. A LiteLLM-backed provider is created
                when the compaction mode needs one.
        """
        config = config or get_config()
        counter = TokenCounter(config.window)

        if provider is None and config.compaction.mode != "extractive":
            provider = ProviderManager(config.providers)

        store = SessionStore(
            workspace or config.sessions.workspace,
            config=config.sessions,
            counter=counter,
        )
        return cls(
            store,
            compactor=SessionCompactor(config.compaction, provider=provider, counter=counter),
            window=SlidingWindow(config.window, counter=counter),
        )

    async def __aenter__(self) -> "SessionManager":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def initialize(self) -> None:
        """Initialize the underlying store."""
        await self.store.initialize()

    async def close(self) -> None:
        """Release the underlying store."""
        await self.store.close()

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: SessionEvent | str, handler: EventHandler) -> None:
        """Subscribe to a lifecycle event."""
        self.events.on(event, handler)

    def off(self, event: SessionEvent | str, handler: EventHandler) -> bool:
        """Unsubscribe from a lifecycle event."""
        return self.events.off(event, handler)

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_sessions(
        self, query: SessionListQuery | None = None, **filters: Any
    ) -> PaginatedResult:
        """List sessions.

        Args:
            query: Explicit query. Built from ``filters`` when omitted.
            **filters: ``SessionListQuery`` fields.
        """
        return await self.store.list_sessions(query or SessionListQuery(**filters))

    async def get_session(self, key: str) -> SessionDetail | None:
        """Load a session with its messages, recording the access."""
        detail = await self.store.get(key)
        if detail is None:
            return None

        await self.store.touch(key)
        metadata = SessionMetadata(**detail.model_dump(exclude={"messages"}))
        await self.events.emit(SessionEvent.ACCESSED, key, metadata)
        return detail

    async def get_metadata(self, key: str) -> SessionMetadata | None:
        """Get a session's metadata without loading messages."""
        return await self.store.get_metadata(key)

    async def search_sessions(self, query: str, limit: int = 20) -> list[SessionMetadata]:
        """Search sessions by key, name or tag."""
        result = await self.store.list_sessions(SessionListQuery(search=query, limit=limit))
        return result.items

    async def search_in_session(self, key: str, keyword: str) -> list[Message]:
        """Search the messages of one session."""
        return await self.store.search_in_session(key, keyword)

    async def export_session(self, key: str, format: ExportFormat | str = ExportFormat.JSON) -> str:
        """Export a session as JSON or Markdown."""
        return await self.store.export_session(key, format)

    async def get_stats(self) -> SessionStats:
        """Get aggregate statistics over all sessions."""
        return await self.store.get_stats()

    # =========================================================================
    # Metadata
    # =========================================================================

    async def _require(self, key: str) -> SessionMetadata:
        metadata = await self.store.get_metadata(key)
        if metadata is None:
            raise SessionNotFoundError(key)
        return metadata

    async def _update(self, key: str, updates: dict[str, Any]) -> SessionMetadata:
        metadata = await self.store.update_metadata(key, updates)
        await self.events.emit(SessionEvent.UPDATED, key, metadata, fields=sorted(updates))
        return metadata

    async def rename_session(self, key: str, name: str | None) -> SessionMetadata:
        """Set or clear a session's display name."""
        return await self._update(key, {"name": name})

    async def tag_session(self, key: str, tags: Iterable[str]) -> SessionMetadata:
        """Add tags to a session, keeping existing ones and dropping duplicates."""
        metadata = await self._require(key)
        merged = list(dict.fromkeys([*metadata.tags, *tags]))
        return await self._update(key, {"tags": merged})

    async def untag_session(self, key: str, tags: Iterable[str]) -> SessionMetadata:
        """Remove tags from a session."""
        metadata = await self._require(key)
        removed = set(tags)
        return await self._update(key, {"tags": [t for t in metadata.tags if t not in removed]})

    async def set_custom_data(
        self, key: str, data: dict[str, Any], merge: bool = True
    ) -> SessionMetadata:
        """Store free-form data on a session.

        Args:
            key: Session key.
            data: Values to store.
            merge: Merge into existing custom data instead of replacing it.
        """
        metadata = await self._require(key)
        custom = {**(metadata.custom_data or {}), **data} if merge else dict(data)
        return await self._update(key, {"custom_data": custom})

    # =========================================================================
    # Status
    # =========================================================================

    async def set_status(self, key: str, status: SessionStatus | str) -> SessionMetadata:
        """Change a session's status and emit the matching events."""
        status = SessionStatus(status)
        previous = SessionStatus((await self._require(key)).status)
        metadata = await self.store.set_status(key, status)

        if previous == status:
            return metadata

        await self.events.emit(
            SessionEvent.STATUS_CHANGED,
            key,
            metadata,
            previous=previous.value,
            status=status.value,
        )
        if status == SessionStatus.ARCHIVED:
            await self.events.emit(SessionEvent.ARCHIVED, key, metadata)
        elif previous == SessionStatus.ARCHIVED:
            await self.events.emit(SessionEvent.RESTORED, key, metadata)

        if status == SessionStatus.PINNED:
            await self.events.emit(SessionEvent.PINNED, key, metadata)
        elif previous == SessionStatus.PINNED:
            await self.events.emit(SessionEvent.UNPINNED, key, metadata)

        return metadata

    async def archive_session(self, key: str) -> SessionMetadata:
        """Archive a session."""
        return await self.set_status(key, SessionStatus.ARCHIVED)

    async def unarchive_session(self, key: str) -> SessionMetadata:
        """Restore an archived session."""
        return await self.set_status(key, SessionStatus.ACTIVE)

    async def pin_session(self, key: str) -> SessionMetadata:
        """Pin a session."""
        return await self.set_status(key, SessionStatus.PINNED)

    async def unpin_session(self, key: str) -> SessionMetadata:
        """Unpin a session."""
        return await self.set_status(key, SessionStatus.ACTIVE)

    async def archive_old(self, older_than_days: int) -> int:
        """Archive sessions not accessed within ``older_than_days`` days.

        Pinned sessions are never archived.

        Returns:
            Number of sessions archived.
        """
        stale = await self.store.find_stale(older_than_days)
        for key in stale:
            await self.archive_session(key)

        if stale:
            logger.info(f"Archived {len(stale)} sessions older than {older_than_days} days")
        return len(stale)

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete_session(self, key: str) -> bool:
        """Delete a session.

        Returns:
            True if the session existed.
        """
        deleted = await self.store.delete(key)
        if deleted:
            await self.events.emit(SessionEvent.DELETED, key)
        return deleted

    async def delete_sessions(self, keys: Iterable[str]) -> BatchDeleteResult:
        """Delete several sessions, reporting failures per key."""
        result = BatchDeleteResult()
        for key in keys:
            try:
                await self.delete_session(key)
                result.success.append(key)
            except SessionStorageError as e:
                logger.warning(f"Failed to delete session {key}: {e}")
                result.failed.append(key)
        return result

    # =========================================================================
    # Messages
    # =========================================================================

    async def load_messages(self, key: str) -> list[Message]:
        """Load a session's messages."""
        return await self.store.load_messages(key)

    async def save_messages(self, key: str, messages: list[Message]) -> SessionMetadata:
        """Save a session's full message list, creating the session if needed."""
        previous = await self.store.get_metadata(key)
        metadata = await self.store.save_messages(key, messages)

        if previous is None:
            await self.events.emit(SessionEvent.CREATED, key, metadata)
            return metadata

        await self.events.emit(
            SessionEvent.UPDATED, key, metadata, message_count=metadata.message_count
        )
        if previous.status == SessionStatus.ARCHIVED.value:
            await self.events.emit(
                SessionEvent.STATUS_CHANGED,
                key,
                metadata,
                previous=SessionStatus.ARCHIVED.value,
                status=metadata.status,
            )
            await self.events.emit(SessionEvent.RESTORED, key, metadata)
        return metadata

    async def append_messages(self, key: str, messages: list[Message]) -> SessionMetadata:
        """Append messages to a session.

        Read-modify-write over the whole file; assumes a single writer per key.
        """
        current = await self.store.load_messages(key)
        return await self.save_messages(key, [*current, *messages])

    # =========================================================================
    # Compaction
    # =========================================================================

    async def needs_compaction(
        self,
        key: str,
        context_window: int,
        messages: list[Message] | None = None,
    ) -> CompactionCheck:
        """Decide whether a session should be compacted.

        Args:
            key: Session key.
            context_window: Model context window in tokens.
            messages: Current history. Loaded from the store when omitted.
        """
        if messages is None:
            messages = await self.store.load_messages(key)
        return self.compactor.needs_compaction(messages, context_window)

    async def compact(
        self,
        key: str,
        messages: list[Message] | None = None,
        instructions: str | None = None,
    ) -> CompactionResult:
        """Compute a compaction for a session without persisting it."""
        if messages is None:
            messages = await self.store.load_messages(key)
        return await self.compactor.compact(messages, instructions)

    async def apply_compaction(
        self, key: str, messages: list[Message], result: CompactionResult
    ) -> list[Message]:
        """Persist a compaction and count it against the session.

        Args:
            key: Session key.
            messages: The history the result was computed from.
            result: Output of ``compact``.

        Returns:
            The new canonical history (the input when nothing was compacted).
        """
        compacted = self.compactor.apply_compaction(messages, result)
        if compacted is messages:
            return messages

        await self.save_messages(key, compacted)
        metadata = await self._require(key)

        custom = dict(metadata.custom_data or {})
        stats = CompactionStats.model_validate(custom.get(COMPACTION_STATS_KEY) or {})
        stats.compaction_count += 1
        stats.total_tokens_before += result.tokens_before
        stats.total_tokens_after += result.tokens_after
        stats.last_compaction_at = datetime.now()
        custom[COMPACTION_STATS_KEY] = stats.model_dump(mode="json")

        metadata = await self.store.update_metadata(
            key,
            {"compacted_count": metadata.compacted_count + 1, "custom_data": custom},
        )

        logger.info(
            f"Session {key} compacted: {result.tokens_before} -> {result.tokens_after} tokens"
        )
        await self.events.emit(
            SessionEvent.COMPACTED,
            key,
            metadata,
            tokens_before=result.tokens_before,
            tokens_after=result.tokens_after,
        )
        return compacted

    async def compact_session(
        self, key: str, instructions: str | None = None
    ) -> tuple[CompactionResult, list[Message]]:
        """Load, compact and persist a session in one step.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        await self._require(key)
        messages = await self.store.load_messages(key)
        result = await self.compactor.compact(messages, instructions)
        return result, await self.apply_compaction(key, messages, result)

    async def get_compaction_stats(self, key: str) -> CompactionStats:
        """Get cumulative compaction statistics for a session."""
        metadata = await self._require(key)
        stats = CompactionStats.model_validate(
            (metadata.custom_data or {}).get(COMPACTION_STATS_KEY) or {}
        )
        stats.compaction_count = max(stats.compaction_count, metadata.compacted_count)
        return stats

    # =========================================================================
    # Window
    # =========================================================================

    def get_window_stats(self, messages: list[Message]) -> WindowStats:
        """Get size and composition stats for a message list."""
        return self.window.get_stats(messages)

    async def estimate_token_usage(self, key: str, context_window: int) -> ContextUsage:
        """Measure a stored session against a context window."""
        messages = await self.store.load_messages(key)
        return self.window.check_budget(
            messages, context_window, self.compactor.config.trigger_threshold
        )

    async def emergency_trim(self, key: str, max_messages: int | None = None) -> list[Message]:
        """Trim a stored session to the window and persist it.

        Args:
            key: Session key.
            max_messages: Override for the window size.

        Returns:
            The trimmed history.
        """
        window = self.window
        if max_messages is not None:
            config = window.config.model_copy(
                update={
                    "max_messages": max_messages,
                    "keep_recent_messages": min(window.config.keep_recent_messages, max_messages),
                }
            )
            window = SlidingWindow(config, counter=window.counter)

        messages = await self.store.load_messages(key)
        if not window.needs_trim(messages):
            return messages

        trimmed = window.trim(messages)
        await self.save_messages(key, trimmed)
        logger.warning(f"Emergency trim of session {key}: {len(messages)} -> {len(trimmed)} messages")
        return trimmed
