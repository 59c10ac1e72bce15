"""
threadvault Memory System.

Provides session persistence, the context window estimator and compaction.

Usage:
    from threadvault.memory import Message, SessionManager

    async with SessionManager.from_config(workspace=".") as manager:
        # Append a turn (the session is created on first save)
        await manager.append_messages("telegram:42", [Message.user("Hello!")])

        # Compact when the history outgrows the context window
        check = await manager.needs_compaction("telegram:42", context_window=128000)
        if check.needed:
            await manager.compact_session("telegram:42")

        # Archive cold sessions
        await manager.archive_old(older_than_days=30)
"""

# Models
from threadvault.memory.models import (
    BatchDeleteResult,
    CompactionCheck,
    CompactionReason,
    CompactionResult,
    CompactionStats,
    ContentPart,
    ContextUsage,
    ExportFormat,
    Message,
    MessageRole,
    PaginatedResult,
    SessionDetail,
    SessionExport,
    SessionIndex,
    SessionListQuery,
    SessionMetadata,
    SessionStats,
    SessionStatus,
    ToolCall,
    WindowStats,
    parse_session_key,
)

# Exceptions
from threadvault.memory.exceptions import (
    SessionCorruptError,
    SessionError,
    SessionKeyConflictError,
    SessionNotFoundError,
    SessionStorageError,
    SummarizationError,
)

# Context window
from threadvault.memory.context import (
    SlidingWindow,
    TokenCounter,
    estimate_tokens,
)

# Compaction
from threadvault.memory.compaction import (
    CompletionCapability,
    DelegatingSummarizer,
    ExtractiveSummarizer,
    SessionCompactor,
    Summarizer,
    SummaryMode,
)

# Storage
from threadvault.memory.storage import SessionStore, file_name_to_key, sanitize_key

# Events
from threadvault.memory.events import EventEmitter, SessionEvent, SessionEventData

# Manager
from threadvault.memory.manager import SessionManager

__all__ = [
    # Models
    "BatchDeleteResult",
    "CompactionCheck",
    "CompactionReason",
    "CompactionResult",
    "CompactionStats",
    "ContentPart",
    "ContextUsage",
    "ExportFormat",
    "Message",
    "MessageRole",
    "PaginatedResult",
    "SessionDetail",
    "SessionExport",
    "SessionIndex",
    "SessionListQuery",
    "SessionMetadata",
    "SessionStats",
    "SessionStatus",
    "ToolCall",
    "WindowStats",
    "parse_session_key",
    # Exceptions
    "SessionCorruptError",
    "SessionError",
    "SessionKeyConflictError",
    "SessionNotFoundError",
    "SessionStorageError",
    "SummarizationError",
    # Context
    "SlidingWindow",
    "TokenCounter",
    "estimate_tokens",
    # Compaction
    "CompletionCapability",
    "DelegatingSummarizer",
    "ExtractiveSummarizer",
    "SessionCompactor",
    "Summarizer",
    "SummaryMode",
    # Storage
    "SessionStore",
    "file_name_to_key",
    "sanitize_key",
    # Events
    "EventEmitter",
    "SessionEvent",
    "SessionEventData",
    # Manager
    "SessionManager",
]
