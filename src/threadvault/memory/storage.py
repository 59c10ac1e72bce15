"""
Session storage for threadvault.

File-based persistence for session message histories with a metadata index
and an archive tier. Layout under a workspace::

    .sessions/index.json              catalog of every known session
    .sessions/<safeKey>.json          active message files
    .sessions/archive/<safeKey>.json  archived message files

Every metadata-mutating call rewrites the whole index before returning, so
the file on disk matches the in-memory cache at each call boundary. A lost or
corrupt index is recovered by scanning the message files (``rebuild_index``);
that scan only reads message files, never modifies them.
"""

import asyncio
import json
import logging
import os
import re
import tempfile
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from threadvault.config.schema import SessionsConfig, WindowConfig
from threadvault.memory.context import TokenCounter
from threadvault.memory.exceptions import (
    SessionCorruptError,
    SessionKeyConflictError,
    SessionNotFoundError,
    SessionStorageError,
)
from threadvault.memory.models import (
    INDEX_VERSION,
    BatchDeleteResult,
    ExportFormat,
    Message,
    PaginatedResult,
    SessionDetail,
    SessionExport,
    SessionIndex,
    SessionListQuery,
    SessionMetadata,
    SessionStats,
    SessionStatus,
)
from threadvault.storage.paths import (
    INDEX_FILENAME,
    ensure_directory,
    expand_path,
    get_archive_dir,
    get_index_path,
    get_sessions_dir,
)

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".meta.json"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_key(key: str) -> str:
    """Map a session key to a filesystem-safe file stem.

    Every character outside ``[A-Za-z0-9_-]`` becomes ``_``.
    """
    return _UNSAFE_CHARS.sub("_", key)


def file_name_to_key(stem: str) -> str:
    """Best-effort reverse of ``sanitize_key`` for display and recovery.

    ``telegram_123456`` becomes ``telegram:123456``. Identity always comes from
    the index or a sidecar file, never from this guess.
    """
    return re.sub(r"^([^_]+)_(.+)$", r"\1:\2", stem)


class SessionStore:
    """File-based session store with a metadata index and archive tier.

    One instance owns one workspace. The index is cached in memory after the
    first access and mutated in place by every write. A single logical writer
    per session key is assumed; concurrent full-file writes to the same key
    resolve as last-writer-wins.
    """

    def __init__(
        self,
        workspace: Path | str,
        config: SessionsConfig | None = None,
        window_config: WindowConfig | None = None,
        counter: TokenCounter | None = None,
    ):
        """Initialize the session store.

        Args:
            workspace: Workspace directory; sessions live in ``<workspace>/.sessions``.
            config: Session store configuration. Defaults to schema defaults.
            window_config: Token estimation settings used for ``estimated_tokens``.
            counter: Token counter. Built from ``window_config`` if not provided.
        """
        self.workspace = expand_path(workspace)
        self.config = config or SessionsConfig()
        self.counter = counter or TokenCounter(window_config)

        self.sessions_dir = get_sessions_dir(self.workspace)
        self.archive_dir = get_archive_dir(self.workspace)
        self.index_path = get_index_path(self.workspace)

        self._sessions: dict[str, SessionMetadata] | None = None
        self._write_lock = asyncio.Lock()

    async def __aenter__(self) -> "SessionStore":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_initialized(self) -> bool:
        """Whether the index has been loaded into memory."""
        return self._sessions is not None

    async def initialize(self) -> None:
        """Create the directories and load the index, rebuilding it if missing."""
        await asyncio.to_thread(ensure_directory, self.sessions_dir)
        await asyncio.to_thread(ensure_directory, self.archive_dir)

        if self.index_path.exists():
            await self._load_index()
        else:
            await self.rebuild_index()

        logger.info(f"Session store initialized at {self.sessions_dir}")

    async def close(self) -> None:
        """Drop the in-memory index. The file on disk is already current."""
        self._sessions = None

    # =========================================================================
    # Paths
    # =========================================================================

    def session_path(self, key: str, archived: bool = False) -> Path:
        """Path of a session's message file in the given tier."""
        directory = self.archive_dir if archived else self.sessions_dir
        return directory / f"{sanitize_key(key)}.json"

    def sidecar_path(self, key: str, archived: bool = False) -> Path:
        """Path of a session's sidecar metadata file in the given tier."""
        directory = self.archive_dir if archived else self.sessions_dir
        return directory / f"{sanitize_key(key)}{SIDECAR_SUFFIX}"

    def locate(self, key: str) -> Path | None:
        """Find a session's message file, checking the active tier first."""
        for archived in (False, True):
            path = self.session_path(key, archived)
            if path.exists():
                return path
        return None

    def _claiming_key(self, key: str, indexed_keys: Iterable[str]) -> str | None:
        """Another session that already owns the file ``key`` would map to, if any.

        Indexed keys win first; otherwise a sidecar naming a different key does.
        """
        stem = sanitize_key(key)
        for other in indexed_keys:
            if other != key and sanitize_key(other) == stem:
                return other

        for archived in (False, True):
            sidecar = self._read_sidecar(self.sidecar_path(key, archived))
            if sidecar is not None and sidecar.key != key:
                return sidecar.key
        return None

    async def _resolve_path(self, key: str, sessions: Mapping[str, SessionMetadata]) -> Path | None:
        """Message file of ``key``, or None when it has none or the file belongs to another key."""
        if key not in sessions:
            owner = await asyncio.to_thread(self._claiming_key, key, list(sessions))
            if owner is not None:
                return None
        return self.locate(key)

    # =========================================================================
    # Index Management
    # =========================================================================

    async def _ensure_index(self) -> dict[str, SessionMetadata]:
        if self._sessions is None:
            await self.initialize()
        return self._sessions  # type: ignore[return-value]

    async def _load_index(self) -> None:
        try:
            text = await asyncio.to_thread(self.index_path.read_text, encoding="utf-8")
        except FileNotFoundError:
            await self.rebuild_index()
            return
        except OSError as e:
            raise SessionStorageError(f"Cannot read index: {e}", path=self.index_path) from e

        try:
            index = SessionIndex.model_validate_json(text)
        except ValueError as e:
            corrupt = SessionCorruptError(f"Invalid session index: {e}", path=self.index_path)
            logger.warning(f"{corrupt}; rebuilding from session files")
            await self.rebuild_index()
            return

        sessions: dict[str, SessionMetadata] = {}
        for metadata in index.sessions:
            if metadata.key in sessions:
                logger.warning(f"Duplicate index entry for session {metadata.key}; keeping the last")
            sessions[metadata.key] = metadata
        self._sessions = sessions
        logger.debug(f"Loaded session index with {len(sessions)} entries")

    async def _save_index(self) -> None:
        if self._sessions is None:
            return

        # Snapshot under the lock so the last write to land holds every mutation
        async with self._write_lock:
            index = SessionIndex(
                version=INDEX_VERSION,
                last_updated=datetime.now(),
                sessions=list(self._sessions.values()),
            )
            await self._write_text(self.index_path, index.model_dump_json(indent=2))

    async def rebuild_index(self) -> int:
        """Rebuild the index by scanning both tiers.

        Active files are scanned before archived ones; when the same key shows
        up in both tiers the active copy wins. Unreadable files are skipped.

        Returns:
            Number of sessions indexed.
        """
        logger.info("Rebuilding session index...")

        sessions: dict[str, SessionMetadata] = {}
        for archived in (False, True):
            for metadata in await asyncio.to_thread(self._scan_tier, archived):
                if metadata.key in sessions:
                    logger.warning(f"Session {metadata.key} present in both tiers; using active copy")
                    continue
                sessions[metadata.key] = metadata

        self._sessions = sessions
        await self._save_index()

        logger.info(f"Session index rebuilt with {len(sessions)} sessions")
        return len(sessions)

    async def migrate_legacy(self) -> int:
        """Index active message files that have no index entry.

        Returns:
            Number of sessions added to the index.
        """
        sessions = await self._ensure_index()
        indexed_stems = {sanitize_key(key) for key in sessions}

        migrated = 0
        for metadata in await asyncio.to_thread(self._scan_tier, False, indexed_stems):
            if metadata.key not in sessions:
                sessions[metadata.key] = metadata
                migrated += 1

        if migrated:
            await self._save_index()

        logger.info(f"Migrated {migrated} legacy sessions")
        return migrated

    def _scan_tier(
        self, archived: bool, skip_stems: set[str] | None = None
    ) -> list[SessionMetadata]:
        directory = self.archive_dir if archived else self.sessions_dir
        if not directory.is_dir():
            return []

        found = []
        for path in sorted(directory.glob("*.json")):
            if path.name == INDEX_FILENAME or path.name.endswith(SIDECAR_SUFFIX):
                continue
            if skip_stems and path.stem in skip_stems:
                continue
            try:
                found.append(self._scan_session_file(path, archived))
            except (SessionCorruptError, OSError) as e:
                logger.warning(f"Skipping unreadable session file {path}: {e}")
        return found

    def _scan_session_file(
        self, path: Path, archived: bool, key: str | None = None
    ) -> SessionMetadata:
        """Synthesize metadata for a message file from its contents and stat."""
        messages = self._read_messages(path)
        stat = path.stat()
        modified = datetime.fromtimestamp(stat.st_mtime)
        created = datetime.fromtimestamp(
            getattr(stat, "st_birthtime", min(stat.st_ctime, stat.st_mtime))
        )

        sidecar = self._read_sidecar(path.with_name(f"{path.stem}{SIDECAR_SUFFIX}"))
        if key is None:
            key = sidecar.key if sidecar else file_name_to_key(path.stem)

        if sidecar is not None and sidecar.key == key:
            metadata = sidecar.model_copy(deep=True)
        else:
            metadata = SessionMetadata.for_key(
                key,
                created_at=created,
                updated_at=modified,
                last_accessed_at=modified,
            )

        if archived:
            metadata.status = SessionStatus.ARCHIVED.value
        elif metadata.status == SessionStatus.ARCHIVED.value:
            metadata.status = SessionStatus.ACTIVE.value

        metadata.message_count = len(messages)
        metadata.estimated_tokens = self.counter.count_messages(messages)
        return metadata

    def _read_sidecar(self, path: Path) -> SessionMetadata | None:
        try:
            return SessionMetadata.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable sidecar {path}: {e}")
            return None

    # =========================================================================
    # File I/O
    # =========================================================================

    def _read_messages(self, path: Path) -> list[Message]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except ValueError as e:
            raise SessionCorruptError(f"Invalid JSON in {path}: {e}", path=path) from e

        if not isinstance(data, list):
            raise SessionCorruptError(f"Session file is not a message list: {path}", path=path)
        try:
            return [Message.model_validate(item) for item in data]
        except ValidationError as e:
            raise SessionCorruptError(f"Invalid message in {path}: {e}", path=path) from e

    def _write_text_sync(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        if not self.config.atomic_writes:
            path.write_text(text, encoding="utf-8")
            return

        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        ) as tmp:
            tmp.write(text)
        try:
            os.replace(tmp.name, path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise

    async def _write_text(self, path: Path, text: str, key: str | None = None) -> None:
        try:
            await asyncio.to_thread(self._write_text_sync, path, text)
        except OSError as e:
            raise SessionStorageError(f"Cannot write {path}: {e}", key=key, path=path) from e

    @staticmethod
    def _unlink(path: Path, key: str | None = None) -> bool:
        """Remove a file, treating a missing file as already removed."""
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise SessionStorageError(f"Cannot delete {path}: {e}", key=key, path=path) from e

    def _move_sync(self, key: str, to_archive: bool) -> None:
        """Move the message file and any sidecar between tiers.

        A source that is missing is skipped; any other failure is raised after
        the source has been read, so a partial move is never silent.
        """
        pairs = [
            (self.session_path(key, not to_archive), self.session_path(key, to_archive)),
            (self.sidecar_path(key, not to_archive), self.sidecar_path(key, to_archive)),
        ]
        for source, target in pairs:
            try:
                data = source.read_bytes()
            except FileNotFoundError:
                continue
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
                source.unlink()
            except OSError as e:
                raise SessionStorageError(
                    f"Failed moving {source} to {target}: {e}", key=key, path=source
                ) from e

    # =========================================================================
    # Queries
    # =========================================================================

    async def exists(self, key: str) -> bool:
        """Whether the key is in the index."""
        return key in await self._ensure_index()

    async def list_sessions(self, query: SessionListQuery | None = None) -> PaginatedResult:
        """List sessions from the cached index.

        Never touches message files, so cost is independent of history size.

        Args:
            query: Filters, ordering and pagination. Defaults to everything.

        Returns:
            One page of matching metadata.
        """
        query = query or SessionListQuery()
        sessions: Iterable[SessionMetadata] = (await self._ensure_index()).values()

        if query.status:
            statuses = query.status if isinstance(query.status, list) else [query.status]
            wanted = {SessionStatus(s).value for s in statuses}
            sessions = [s for s in sessions if s.status in wanted]

        if query.channel:
            sessions = [s for s in sessions if s.source_channel == query.channel]

        if query.tags:
            tags = set(query.tags)
            sessions = [s for s in sessions if tags.intersection(s.tags)]

        if query.search:
            needle = query.search.lower()
            sessions = [
                s
                for s in sessions
                if needle in s.key.lower()
                or (s.name and needle in s.name.lower())
                or any(needle in tag.lower() for tag in s.tags)
            ]

        ordered = sorted(
            sessions,
            key=lambda s: getattr(s, query.sort_by),
            reverse=query.sort_order == "desc",
        )

        total = len(ordered)
        limit = query.limit or self.config.default_list_limit
        offset = query.offset
        items = [s.model_copy(deep=True) for s in ordered[offset : offset + limit]]

        return PaginatedResult(
            items=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + limit < total,
        )

    async def get_metadata(self, key: str) -> SessionMetadata | None:
        """Look up metadata, indexing an unindexed message file on a miss.

        Args:
            key: Session key.

        Returns:
            Copy of the metadata, or None when the session does not exist.
        """
        sessions = await self._ensure_index()
        metadata = sessions.get(key)

        if metadata is None:
            path = await self._resolve_path(key, sessions)
            if path is None:
                return None
            metadata = await asyncio.to_thread(
                self._scan_session_file, path, path.parent == self.archive_dir, key
            )
            sessions[key] = metadata
            await self._save_index()
            logger.info(f"Indexed previously unindexed session {key}")

        return metadata.model_copy(deep=True)

    async def get(self, key: str) -> SessionDetail | None:
        """Load metadata plus the full message list.

        Returns:
            Session detail, or None when the session does not exist.
        """
        metadata = await self.get_metadata(key)
        if metadata is None:
            return None

        messages = await self.load_messages(key)
        return SessionDetail(**metadata.model_dump(), messages=messages)

    async def search_in_session(self, key: str, keyword: str) -> list[Message]:
        """Find messages of one session whose text contains ``keyword``.

        Case-insensitive.
        """
        needle = keyword.lower()
        return [m for m in await self.load_messages(key) if needle in m.text.lower()]

    # =========================================================================
    # Metadata Updates
    # =========================================================================

    async def update_metadata(self, key: str, updates: Mapping[str, Any]) -> SessionMetadata:
        """Merge fields into a session's metadata, refreshing ``updated_at``.

        A ``status`` entry is routed through ``set_status`` so the message
        file follows it between tiers.

        Raises:
            SessionNotFoundError: If the key is not indexed.
            ValueError: If ``updates`` tries to change the key.
        """
        updates = dict(updates)
        if "key" in updates and updates["key"] != key:
            raise ValueError("Session keys cannot be changed")
        updates.pop("key", None)
        status = updates.pop("status", None)

        sessions = await self._ensure_index()
        current = sessions.get(key)
        if current is None:
            raise SessionNotFoundError(key)

        merged = SessionMetadata.model_validate(
            {**current.model_dump(), **updates, "updated_at": datetime.now()}
        )
        sessions[key] = merged
        await self._save_index()
        logger.debug(f"Session {key} metadata updated: {sorted(updates)}")

        if status is not None:
            return await self.set_status(key, status)
        return merged.model_copy(deep=True)

    async def touch(self, key: str) -> None:
        """Refresh ``last_accessed_at`` without counting as an update."""
        sessions = await self._ensure_index()
        metadata = sessions.get(key)
        if metadata is None:
            raise SessionNotFoundError(key)

        metadata.last_accessed_at = datetime.now()
        await self._save_index()

    async def set_status(self, key: str, status: SessionStatus | str) -> SessionMetadata:
        """Change a session's status, moving its files when entering or leaving ARCHIVED.

        Raises:
            SessionNotFoundError: If the key is not indexed.
            SessionStorageError: If moving the files fails.
        """
        status = SessionStatus(status)
        sessions = await self._ensure_index()
        metadata = sessions.get(key)
        if metadata is None:
            raise SessionNotFoundError(key)

        was_archived = metadata.status == SessionStatus.ARCHIVED.value
        archiving = status == SessionStatus.ARCHIVED

        if archiving and not was_archived:
            await asyncio.to_thread(self._move_sync, key, True)
        elif was_archived and not archiving:
            await asyncio.to_thread(self._move_sync, key, False)

        metadata.status = status.value
        metadata.updated_at = datetime.now()
        await self._save_index()

        if archiving and not was_archived:
            await self._write_text(
                self.sidecar_path(key, archived=True), metadata.model_dump_json(indent=2), key
            )
            logger.info(f"Session {key} archived")
        elif was_archived and not archiving:
            logger.info(f"Session {key} restored from archive")

        return metadata.model_copy(deep=True)

    async def archive(self, key: str) -> SessionMetadata:
        """Archive a session."""
        return await self.set_status(key, SessionStatus.ARCHIVED)

    async def unarchive(self, key: str) -> SessionMetadata:
        """Restore an archived session to ACTIVE."""
        return await self.set_status(key, SessionStatus.ACTIVE)

    async def pin(self, key: str) -> SessionMetadata:
        """Pin a session, exempting it from automatic archival."""
        return await self.set_status(key, SessionStatus.PINNED)

    async def unpin(self, key: str) -> SessionMetadata:
        """Unpin a session."""
        return await self.set_status(key, SessionStatus.ACTIVE)

    # =========================================================================
    # Messages
    # =========================================================================

    async def load_messages(self, key: str) -> list[Message]:
        """Load a session's messages from whichever tier holds them.

        Returns:
            Messages in order; an empty list when the session has no file.

        Raises:
            SessionCorruptError: If the file does not contain a valid message list.
        """
        sessions = await self._ensure_index()
        path = await self._resolve_path(key, sessions)
        if path is None:
            return []

        try:
            messages = await asyncio.to_thread(self._read_messages, path)
        except OSError as e:
            raise SessionStorageError(f"Cannot read {path}: {e}", key=key, path=path) from e

        logger.debug(f"Loaded {len(messages)} messages for session {key}")
        return messages

    async def save_messages(self, key: str, messages: list[Message]) -> SessionMetadata:
        """Overwrite a session's message file and upsert its index entry.

        The first save for an unseen key creates the session. Saving to an
        archived session writes the active tier and restores it to ACTIVE.
        Callers own read-modify-write composition.

        Raises:
            SessionKeyConflictError: If a new key maps to an existing session's file.
            SessionStorageError: If the write fails.
        """
        sessions = await self._ensure_index()
        metadata = sessions.get(key)

        if metadata is None:
            owner = await asyncio.to_thread(self._claiming_key, key, list(sessions))
            if owner is not None:
                raise SessionKeyConflictError(key, owner)

        payload = json.dumps([m.to_storage_dict() for m in messages], indent=2, ensure_ascii=False)
        await self._write_text(self.session_path(key), payload, key)

        restored = False
        if self.session_path(key, archived=True).exists():
            await asyncio.to_thread(self._unlink, self.session_path(key, archived=True), key)
            await asyncio.to_thread(self._unlink, self.sidecar_path(key, archived=True), key)
            restored = True

        now = datetime.now()
        estimated = self.counter.count_messages(messages)

        if metadata is None:
            metadata = SessionMetadata.for_key(
                key,
                created_at=now,
                updated_at=now,
                last_accessed_at=now,
                message_count=len(messages),
                estimated_tokens=estimated,
            )
            sessions[key] = metadata
        else:
            metadata.message_count = len(messages)
            metadata.estimated_tokens = estimated
            metadata.updated_at = now
            metadata.last_accessed_at = now
            if restored or metadata.status == SessionStatus.ARCHIVED.value:
                metadata.status = SessionStatus.ACTIVE.value

        await self._save_index()
        logger.debug(f"Saved {len(messages)} messages for session {key}")
        return metadata.model_copy(deep=True)

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete(self, key: str) -> bool:
        """Delete a session's files from both tiers and its index entry.

        Returns:
            True if anything was removed, False if the session did not exist.

        Raises:
            SessionStorageError: If a file exists but cannot be removed.
        """
        sessions = await self._ensure_index()
        if key not in sessions:
            owner = await asyncio.to_thread(self._claiming_key, key, list(sessions))
            if owner is not None:
                logger.warning(f"Not deleting {key}: its file belongs to session {owner}")
                return False

        removed_file = False
        for archived in (False, True):
            removed_file |= await asyncio.to_thread(
                self._unlink, self.session_path(key, archived), key
            )
            await asyncio.to_thread(self._unlink, self.sidecar_path(key, archived), key)

        in_index = sessions.pop(key, None) is not None
        if in_index:
            await self._save_index()

        if in_index or removed_file:
            logger.info(f"Session {key} deleted")
            return True
        return False

    async def delete_many(self, keys: Iterable[str]) -> BatchDeleteResult:
        """Delete several sessions, reporting failures per key.

        Keys that do not exist count as successes.
        """
        result = BatchDeleteResult()
        for key in keys:
            try:
                await self.delete(key)
                result.success.append(key)
            except SessionStorageError as e:
                logger.warning(f"Failed to delete session {key}: {e}")
                result.failed.append(key)
        return result

    # =========================================================================
    # Export & Statistics
    # =========================================================================

    async def export_session(self, key: str, format: ExportFormat | str = ExportFormat.JSON) -> str:
        """Export a session as JSON or a Markdown transcript.

        Read-only.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        format = ExportFormat(format)
        detail = await self.get(key)
        if detail is None:
            raise SessionNotFoundError(key)

        metadata = SessionMetadata(**detail.model_dump(exclude={"messages"}))

        if format == ExportFormat.JSON:
            export = SessionExport(metadata=metadata, messages=detail.messages)
            return export.model_dump_json(indent=2, exclude_none=True)

        lines = [
            f"# {detail.name or detail.key}",
            "",
            f"- **Key:** {detail.key}",
            f"- **Channel:** {detail.source_channel}",
            f"- **Status:** {detail.status}",
            f"- **Created:** {detail.created_at.isoformat()}",
            f"- **Messages:** {detail.message_count}",
            f"- **Tags:** {', '.join(detail.tags) or 'none'}",
            "",
            "---",
            "",
        ]
        for message in detail.messages:
            lines.extend([f"## {str(message.role).capitalize()}", "", message.text, "", "---", ""])

        return "\n".join(lines)

    async def get_stats(self) -> SessionStats:
        """Aggregate statistics in a single pass over the index."""
        stats = SessionStats()

        for metadata in (await self._ensure_index()).values():
            stats.total_sessions += 1
            if metadata.status == SessionStatus.ACTIVE.value:
                stats.active_sessions += 1
            elif metadata.status == SessionStatus.ARCHIVED.value:
                stats.archived_sessions += 1
            elif metadata.status == SessionStatus.PINNED.value:
                stats.pinned_sessions += 1

            stats.total_messages += metadata.message_count
            stats.total_tokens += metadata.estimated_tokens
            stats.by_channel[metadata.source_channel] = (
                stats.by_channel.get(metadata.source_channel, 0) + 1
            )

            if stats.oldest_session is None or metadata.created_at < stats.oldest_session:
                stats.oldest_session = metadata.created_at
            if stats.newest_session is None or metadata.created_at > stats.newest_session:
                stats.newest_session = metadata.created_at

        return stats

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def find_stale(self, older_than_days: int) -> list[str]:
        """Keys of sessions eligible for automatic archival.

        Archived and pinned sessions are never eligible.
        """
        cutoff = datetime.now() - timedelta(days=older_than_days)
        exempt = {SessionStatus.ARCHIVED.value, SessionStatus.PINNED.value}
        return [
            metadata.key
            for metadata in (await self._ensure_index()).values()
            if metadata.status not in exempt and metadata.last_accessed_at < cutoff
        ]

    async def archive_old(self, older_than_days: int) -> int:
        """Archive sessions not accessed within ``older_than_days`` days.

        Returns:
            Number of sessions archived.
        """
        stale = await self.find_stale(older_than_days)
        for key in stale:
            await self.archive(key)
        return len(stale)
