"""
Unit tests for the session manager and lifecycle events.
"""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from threadvault.config import CompactionConfig, Config, WindowConfig
from threadvault.memory import (
    EventEmitter,
    Message,
    SessionCompactor,
    SessionEvent,
    SessionEventData,
    SessionKeyConflictError,
    SessionManager,
    SessionNotFoundError,
    SessionStatus,
    SessionStore,
    SlidingWindow,
)


class EventRecorder:
    """Collects every event emitted by a manager."""

    def __init__(self, manager: SessionManager):
        self.events: list[SessionEventData] = []
        for event in SessionEvent:
            manager.on(event, self.events.append)

    @property
    def names(self) -> list[str]:
        return [e.event for e in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
async def manager(workspace: Path) -> SessionManager:
    """Provide an initialized manager with extractive compaction."""
    store = SessionStore(workspace)
    session_manager = SessionManager(
        store,
        compactor=SessionCompactor(
            CompactionConfig(mode="extractive", keep_recent_messages=10),
            counter=store.counter,
        ),
    )
    await session_manager.initialize()
    return session_manager


@pytest.fixture
def recorder(manager: SessionManager) -> EventRecorder:
    return EventRecorder(manager)


# =============================================================================
# Event Emitter Tests
# =============================================================================


class TestEventEmitter:
    """Tests for EventEmitter."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        """Both plain and coroutine handlers receive the event."""
        emitter = EventEmitter()
        received = []

        async def async_handler(data):
            received.append(("async", data.key))

        emitter.on(SessionEvent.CREATED, lambda data: received.append(("sync", data.key)))
        emitter.on(SessionEvent.CREATED, async_handler)

        await emitter.emit(SessionEvent.CREATED, "telegram:1")

        assert received == [("sync", "telegram:1"), ("async", "telegram:1")]

    @pytest.mark.asyncio
    async def test_string_event_names(self):
        """Handlers can subscribe by event value."""
        emitter = EventEmitter()
        received = []
        emitter.on("session_deleted", received.append)

        await emitter.emit(SessionEvent.DELETED, "telegram:1", reason="cleanup")

        assert received[0].event == "session_deleted"
        assert received[0].details == {"reason": "cleanup"}

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self):
        """A raising handler does not stop later handlers."""
        emitter = EventEmitter()
        received = []

        def broken(data):
            raise RuntimeError("boom")

        emitter.on(SessionEvent.UPDATED, broken)
        emitter.on(SessionEvent.UPDATED, received.append)

        await emitter.emit(SessionEvent.UPDATED, "telegram:1")

        assert len(received) == 1

    def test_off(self):
        """Unsubscribing removes the handler once."""
        emitter = EventEmitter()
        handler = lambda data: None  # noqa: E731
        emitter.on(SessionEvent.PINNED, handler)

        assert emitter.handler_count(SessionEvent.PINNED) == 1
        assert emitter.off(SessionEvent.PINNED, handler) is True
        assert emitter.off(SessionEvent.PINNED, handler) is False
        assert emitter.handler_count(SessionEvent.PINNED) == 0

    def test_unknown_event_rejected(self):
        """Subscribing to an unknown event name fails."""
        with pytest.raises(ValueError):
            EventEmitter().on("session_exploded", lambda data: None)


# =============================================================================
# Lifecycle Event Tests
# =============================================================================


class TestManagerEvents:
    """Tests for events emitted by manager operations."""

    @pytest.mark.asyncio
    async def test_created_then_updated(self, manager, recorder, sample_messages):
        """First save creates, later saves update."""
        await manager.save_messages("telegram:1", sample_messages)
        await manager.save_messages("telegram:1", sample_messages[:2])

        assert recorder.names == [SessionEvent.CREATED, SessionEvent.UPDATED]
        assert recorder.events[0].metadata.message_count == len(sample_messages)
        assert recorder.events[1].details == {"message_count": 2}

    @pytest.mark.asyncio
    async def test_archive_and_restore(self, manager, recorder, sample_messages):
        """Archiving and restoring emit status and tier events."""
        await manager.save_messages("telegram:1", sample_messages)
        recorder.clear()

        await manager.archive_session("telegram:1")
        await manager.unarchive_session("telegram:1")

        assert recorder.names == [
            SessionEvent.STATUS_CHANGED,
            SessionEvent.ARCHIVED,
            SessionEvent.STATUS_CHANGED,
            SessionEvent.RESTORED,
        ]
        assert recorder.events[0].details == {"previous": "active", "status": "archived"}

    @pytest.mark.asyncio
    async def test_pin_and_unpin(self, manager, recorder, sample_messages):
        """Pinning emits pinned and unpinned events."""
        await manager.save_messages("telegram:1", sample_messages)
        recorder.clear()

        await manager.pin_session("telegram:1")
        await manager.unpin_session("telegram:1")

        assert SessionEvent.PINNED in recorder.names
        assert SessionEvent.UNPINNED in recorder.names

    @pytest.mark.asyncio
    async def test_same_status_is_silent(self, manager, recorder, sample_messages):
        """Setting the current status again emits nothing."""
        await manager.save_messages("telegram:1", sample_messages)
        recorder.clear()

        await manager.set_status("telegram:1", SessionStatus.ACTIVE)

        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_save_to_archived_emits_restored(self, manager, recorder, sample_messages):
        """Writing to an archived session reports the restore."""
        await manager.save_messages("telegram:1", sample_messages)
        await manager.archive_session("telegram:1")
        recorder.clear()

        metadata = await manager.save_messages("telegram:1", sample_messages)

        assert recorder.names == [
            SessionEvent.UPDATED,
            SessionEvent.STATUS_CHANGED,
            SessionEvent.RESTORED,
        ]
        assert metadata.status == SessionStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_save_alias_key_refused(self, manager, recorder, sample_messages):
        """A key sharing another session's file name cannot overwrite it."""
        await manager.save_messages("telegram:42", sample_messages)
        recorder.clear()

        with pytest.raises(SessionKeyConflictError):
            await manager.save_messages("telegram_42", [Message.user("intruder")])

        assert await manager.load_messages("telegram:42") == sample_messages
        assert await manager.get_metadata("telegram_42") is None
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_delete(self, manager, recorder, sample_messages):
        """Only deleting an existing session emits an event."""
        await manager.save_messages("telegram:1", sample_messages)
        recorder.clear()

        assert await manager.delete_session("telegram:1") is True
        assert await manager.delete_session("telegram:1") is False

        assert recorder.names == [SessionEvent.DELETED]

    @pytest.mark.asyncio
    async def test_get_session_records_access(self, manager, recorder, sample_messages):
        """Reading a full session touches it and emits accessed."""
        await manager.save_messages("telegram:1", sample_messages)
        before = await manager.get_metadata("telegram:1")
        recorder.clear()

        detail = await manager.get_session("telegram:1")
        after = await manager.get_metadata("telegram:1")

        assert detail.messages == sample_messages
        assert recorder.names == [SessionEvent.ACCESSED]
        assert after.last_accessed_at >= before.last_accessed_at
        assert after.updated_at == before.updated_at

    @pytest.mark.asyncio
    async def test_get_missing_session(self, manager, recorder):
        """A missing session returns None without events."""
        assert await manager.get_session("telegram:missing") is None
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_save(self, manager, sample_messages):
        """Operations complete even when a subscriber raises."""

        async def broken(data):
            raise RuntimeError("subscriber down")

        manager.on(SessionEvent.CREATED, broken)
        metadata = await manager.save_messages("telegram:1", sample_messages)

        assert metadata.message_count == len(sample_messages)
        assert await manager.load_messages("telegram:1") == sample_messages


# =============================================================================
# Metadata Tests
# =============================================================================


class TestManagerMetadata:
    """Tests for rename, tags and custom data."""

    @pytest.mark.asyncio
    async def test_rename(self, manager, recorder, sample_messages):
        """Renaming emits an update naming the changed field."""
        await manager.save_messages("telegram:1", sample_messages)
        recorder.clear()

        metadata = await manager.rename_session("telegram:1", "Python help")

        assert metadata.name == "Python help"
        assert recorder.events[0].details == {"fields": ["name"]}

    @pytest.mark.asyncio
    async def test_tag_merge_and_untag(self, manager, sample_messages):
        """Tags merge without duplicates and can be removed."""
        await manager.save_messages("telegram:1", sample_messages)

        await manager.tag_session("telegram:1", ["python", "work"])
        metadata = await manager.tag_session("telegram:1", ["work", "io"])
        assert metadata.tags == ["python", "work", "io"]

        metadata = await manager.untag_session("telegram:1", ["work", "absent"])
        assert metadata.tags == ["python", "io"]

    @pytest.mark.asyncio
    async def test_tag_missing_session(self, manager):
        """Tagging an unknown key raises NotFound."""
        with pytest.raises(SessionNotFoundError):
            await manager.tag_session("telegram:missing", ["x"])

    @pytest.mark.asyncio
    async def test_custom_data_merge(self, manager, sample_messages):
        """Custom data merges by default and replaces on request."""
        await manager.save_messages("telegram:1", sample_messages)

        await manager.set_custom_data("telegram:1", {"a": 1})
        metadata = await manager.set_custom_data("telegram:1", {"b": 2})
        assert metadata.custom_data == {"a": 1, "b": 2}

        metadata = await manager.set_custom_data("telegram:1", {"c": 3}, merge=False)
        assert metadata.custom_data == {"c": 3}

    @pytest.mark.asyncio
    async def test_list_with_filters(self, manager, sample_messages):
        """Keyword filters build the list query."""
        await manager.save_messages("telegram:1", sample_messages)
        await manager.save_messages("discord:2", sample_messages)

        result = await manager.list_sessions(channel="discord")

        assert [m.key for m in result.items] == ["discord:2"]

    @pytest.mark.asyncio
    async def test_search_sessions(self, manager, sample_messages):
        """Search returns matching metadata."""
        await manager.save_messages("telegram:1", sample_messages)
        await manager.rename_session("telegram:1", "File handling")
        await manager.save_messages("telegram:2", sample_messages)

        found = await manager.search_sessions("handling")

        assert [m.key for m in found] == ["telegram:1"]

    @pytest.mark.asyncio
    async def test_archive_old(self, manager, recorder, sample_messages):
        """Stale sessions are archived through the manager with events."""
        await manager.save_messages("telegram:old", sample_messages)
        await manager.save_messages("telegram:new", sample_messages)
        manager.store._sessions["telegram:old"].last_accessed_at = datetime.now() - timedelta(days=90)
        recorder.clear()

        assert await manager.archive_old(30) == 1
        assert SessionEvent.ARCHIVED in recorder.names

    @pytest.mark.asyncio
    async def test_delete_sessions(self, manager, sample_messages):
        """Batch delete through the manager."""
        await manager.save_messages("telegram:1", sample_messages)

        result = await manager.delete_sessions(["telegram:1", "telegram:2"])

        assert result.success == ["telegram:1", "telegram:2"]
        assert (await manager.get_stats()).total_sessions == 0


# =============================================================================
# Message Tests
# =============================================================================


class TestManagerMessages:
    """Tests for append and load."""

    @pytest.mark.asyncio
    async def test_append_messages(self, manager, sample_messages):
        """Appending extends the stored history."""
        await manager.save_messages("telegram:1", sample_messages[:2])
        extra = [Message.user("One more question"), Message.assistant("One more answer")]

        metadata = await manager.append_messages("telegram:1", extra)

        assert metadata.message_count == 4
        assert await manager.load_messages("telegram:1") == [*sample_messages[:2], *extra]

    @pytest.mark.asyncio
    async def test_append_creates_session(self, manager, recorder):
        """Appending to an unknown key creates it."""
        await manager.append_messages("telegram:new", [Message.user("hi")])
        assert recorder.names == [SessionEvent.CREATED]


# =============================================================================
# Compaction Tests
# =============================================================================


class TestManagerCompaction:
    """Tests for compaction bound to a session."""

    @pytest.mark.asyncio
    async def test_needs_compaction_loads_messages(self, manager, conversation):
        """The decision uses the stored history when none is passed."""
        await manager.save_messages("telegram:1", conversation)
        tokens = manager.compactor.estimate_tokens(conversation)

        check = await manager.needs_compaction("telegram:1", context_window=tokens)

        assert check.needed is True

    @pytest.mark.asyncio
    async def test_compact_session_persists(self, manager, recorder, conversation):
        """compact_session writes the compacted history and counts it."""
        await manager.save_messages("telegram:1", conversation)
        recorder.clear()

        result, messages = await manager.compact_session("telegram:1")

        assert result.compacted is True
        assert len(messages) == 11
        assert await manager.load_messages("telegram:1") == messages

        metadata = await manager.get_metadata("telegram:1")
        assert metadata.compacted_count == 1
        assert metadata.message_count == 11
        assert SessionEvent.COMPACTED in recorder.names

        stats = await manager.get_compaction_stats("telegram:1")
        assert stats.compaction_count == 1
        assert stats.total_tokens_before == result.tokens_before
        assert stats.total_tokens_after == result.tokens_after
        assert stats.last_compaction_at is not None

    @pytest.mark.asyncio
    async def test_repeated_compaction_accumulates(self, manager, conversation, make_conversation):
        """Stats accumulate across compactions."""
        await manager.save_messages("telegram:1", conversation)
        first, messages = await manager.compact_session("telegram:1")
        await manager.append_messages("telegram:1", make_conversation(10, prefix="later"))

        second, _ = await manager.compact_session("telegram:1")

        stats = await manager.get_compaction_stats("telegram:1")
        assert second.compacted is True
        assert stats.compaction_count == 2
        assert stats.total_tokens_before == first.tokens_before + second.tokens_before

    @pytest.mark.asyncio
    async def test_apply_noop_keeps_session(self, manager, recorder, sample_messages):
        """A no-op result leaves the stored session and counters alone."""
        await manager.save_messages("telegram:1", sample_messages)
        recorder.clear()

        result = await manager.compact("telegram:1")
        messages = await manager.apply_compaction("telegram:1", sample_messages, result)

        assert result.compacted is False
        assert messages is sample_messages
        assert (await manager.get_metadata("telegram:1")).compacted_count == 0
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_compact_missing_session(self, manager):
        """Compacting an unknown key raises NotFound."""
        with pytest.raises(SessionNotFoundError):
            await manager.compact_session("telegram:missing")

    @pytest.mark.asyncio
    async def test_compact_archived_session_restores(self, manager, recorder, conversation):
        """Compacting an archived session brings it back with restore events."""
        await manager.save_messages("telegram:1", conversation)
        await manager.archive_session("telegram:1")
        recorder.clear()

        result, _ = await manager.compact_session("telegram:1")

        assert result.compacted is True
        assert (await manager.get_metadata("telegram:1")).status == SessionStatus.ACTIVE.value
        assert manager.store.session_path("telegram:1").exists()
        assert recorder.names == [
            SessionEvent.UPDATED,
            SessionEvent.STATUS_CHANGED,
            SessionEvent.RESTORED,
            SessionEvent.COMPACTED,
        ]

    @pytest.mark.asyncio
    async def test_custom_data_survives_compaction(self, manager, conversation):
        """Compaction stats sit alongside existing custom data."""
        await manager.save_messages("telegram:1", conversation)
        await manager.set_custom_data("telegram:1", {"owner": "bot"})

        await manager.compact_session("telegram:1")

        custom = (await manager.get_metadata("telegram:1")).custom_data
        assert custom["owner"] == "bot"
        assert custom["compaction"]["compaction_count"] == 1


# =============================================================================
# Window Tests
# =============================================================================


class TestManagerWindow:
    """Tests for window statistics and trimming."""

    @pytest.mark.asyncio
    async def test_estimate_token_usage(self, manager, sample_messages):
        """Usage is measured against the stored history."""
        await manager.save_messages("telegram:1", sample_messages)

        usage = await manager.estimate_token_usage("telegram:1", context_window=10_000)

        assert usage.current_tokens == manager.window.estimate_tokens(sample_messages)
        assert usage.max_tokens == 10_000
        assert usage.over_threshold is False

    @pytest.mark.asyncio
    async def test_emergency_trim(self, manager, make_conversation):
        """Trimming keeps the most recent messages and persists them."""
        messages = make_conversation(30)
        await manager.save_messages("telegram:1", messages)

        trimmed = await manager.emergency_trim("telegram:1", max_messages=10)

        assert trimmed == messages[-10:]
        assert await manager.load_messages("telegram:1") == trimmed

    @pytest.mark.asyncio
    async def test_emergency_trim_noop(self, manager, sample_messages):
        """Histories within the window are left alone."""
        await manager.save_messages("telegram:1", sample_messages)
        assert await manager.emergency_trim("telegram:1") == sample_messages

    def test_window_stats(self, manager, sample_messages):
        """Window stats delegate to the sliding window."""
        stats = manager.get_window_stats(sample_messages)
        assert stats.message_count == len(sample_messages)


# =============================================================================
# Construction Tests
# =============================================================================


class TestFromConfig:
    """Tests for building a manager from configuration."""

    @pytest.mark.asyncio
    async def test_extractive_config(self, workspace):
        """Extractive mode needs no provider."""
        config = Config(
            compaction=CompactionConfig(mode="extractive"),
            window=WindowConfig(max_messages=42),
        )

        async with SessionManager.from_config(config, workspace=workspace) as manager:
            assert manager.compactor.delegate is None
            assert manager.window.config.max_messages == 42
            assert manager.store.sessions_dir == workspace.resolve() / ".sessions"
            assert manager.store.sessions_dir.is_dir()

    def test_explicit_provider(self, workspace):
        """A supplied provider is used for delegated compaction."""

        class Provider:
            async def complete(self, messages, **kwargs):
                raise NotImplementedError

        manager = SessionManager.from_config(Config(), workspace=workspace, provider=Provider())
        assert manager.compactor.delegate is not None

    def test_defaults_share_counter(self, workspace):
        """Default compactor and window reuse the store's counter."""
        store = SessionStore(workspace)
        manager = SessionManager(store)
        assert manager.compactor.counter is store.counter
        assert isinstance(manager.window, SlidingWindow)
        assert manager.window.counter is store.counter
