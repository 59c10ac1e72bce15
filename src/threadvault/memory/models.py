"""
Memory models for threadvault.

Defines data structures for messages, session metadata, the session index,
list queries, statistics, exports and compaction results.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

INDEX_VERSION = "1.0"

# Epoch values above this are treated as milliseconds
_EPOCH_MS_CUTOFF = 100_000_000_000


class MessageRole(str, Enum):
    """Role of a conversational turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    TOOL_RESULT = "toolResult"


class SessionStatus(str, Enum):
    """Lifecycle status of a session."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    PINNED = "pinned"


class ExportFormat(str, Enum):
    """Session export formats."""

    JSON = "json"
    MARKDOWN = "markdown"


class ContentPart(BaseModel):
    """One typed part of structured message content.

    Only parts of type ``text`` count toward size estimation; any other
    fields (images, tool payloads) are carried through untouched.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str
    text: str | None = None


class ToolCall(BaseModel):
    """A tool invocation requested by the assistant."""

    model_config = ConfigDict(extra="allow", frozen=True)

    id: str
    type: str = "function"
    function: dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """A single conversational turn.

    Messages are immutable once created; compaction replaces the history
    wholesale instead of editing individual turns.
    """

    model_config = ConfigDict(use_enum_values=True, frozen=True)

    role: MessageRole
    content: str | list[ContentPart] = ""
    timestamp: datetime | None = None
    tool_call_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tool_call_id", "toolCallId"),
    )
    tool_calls: list[ToolCall] | None = Field(
        default=None,
        validation_alias=AliasChoices("tool_calls", "toolCalls"),
    )
    name: str | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Any) -> Any:
        if value in ("tool-result", "tool_result"):
            return MessageRole.TOOL_RESULT.value
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_epoch(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            seconds = value / 1000 if value > _EPOCH_MS_CUTOFF else value
            return datetime.fromtimestamp(seconds)
        return value

    @property
    def text(self) -> str:
        """Text content, joining the text parts of structured content."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(part.text or "" for part in self.content if part.type == "text")

    @classmethod
    def system(cls, content: str) -> "Message":
        """Create a system message."""
        return cls(role=MessageRole.SYSTEM, content=content, timestamp=datetime.now())

    @classmethod
    def user(cls, content: str) -> "Message":
        """Create a user message."""
        return cls(role=MessageRole.USER, content=content, timestamp=datetime.now())

    @classmethod
    def assistant(cls, content: str) -> "Message":
        """Create an assistant message."""
        return cls(role=MessageRole.ASSISTANT, content=content, timestamp=datetime.now())

    def to_storage_dict(self) -> dict[str, Any]:
        """Serialize for the on-disk message file."""
        return self.model_dump(mode="json", exclude_none=True)


def parse_session_key(key: str) -> tuple[str, str]:
    """Split a ``<channel>:<chatId>[:<suffix>]`` key into channel and chat id.

    Keys without a channel prefix report the channel ``unknown``.
    """
    parts = key.split(":")
    if len(parts) >= 2:
        return parts[0], ":".join(parts[1:])
    return "unknown", key


class SessionMetadata(BaseModel):
    """Index record for one session."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    key: str
    name: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    tags: list[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    last_accessed_at: datetime = Field(default_factory=datetime.now)

    # Counters
    message_count: int = 0
    estimated_tokens: int = 0
    compacted_count: int = 0

    # Derived from the key
    source_channel: str = "unknown"
    source_chat_id: str = ""

    custom_data: dict[str, Any] | None = None

    @classmethod
    def for_key(cls, key: str, **fields: Any) -> "SessionMetadata":
        """Create metadata for a key, deriving the source channel and chat id."""
        channel, chat_id = parse_session_key(key)
        return cls(key=key, source_channel=channel, source_chat_id=chat_id, **fields)


class SessionDetail(SessionMetadata):
    """Session metadata plus the full ordered message list."""

    messages: list[Message] = Field(default_factory=list)


class SessionIndex(BaseModel):
    """The catalog of all known sessions, as persisted in ``index.json``."""

    version: str = INDEX_VERSION
    last_updated: datetime = Field(default_factory=datetime.now)
    sessions: list[SessionMetadata] = Field(default_factory=list)


SortField = Literal["updated_at", "created_at", "message_count", "last_accessed_at"]


class SessionListQuery(BaseModel):
    """Filters, ordering and pagination for listing sessions."""

    model_config = ConfigDict(use_enum_values=True)

    status: SessionStatus | list[SessionStatus] | None = None
    channel: str | None = None
    tags: list[str] | None = None
    search: str | None = None
    sort_by: SortField = "updated_at"
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class PaginatedResult(BaseModel):
    """One page of session metadata."""

    items: list[SessionMetadata] = Field(default_factory=list)
    total: int = 0
    limit: int = 0
    offset: int = 0
    has_more: bool = False


class BatchDeleteResult(BaseModel):
    """Per-key outcome of a batch delete."""

    success: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class SessionStats(BaseModel):
    """Aggregate statistics over the index."""

    total_sessions: int = 0
    active_sessions: int = 0
    archived_sessions: int = 0
    pinned_sessions: int = 0
    total_messages: int = 0
    total_tokens: int = 0
    oldest_session: datetime | None = None
    newest_session: datetime | None = None
    by_channel: dict[str, int] = Field(default_factory=dict)


class SessionExport(BaseModel):
    """JSON export envelope."""

    version: str = INDEX_VERSION
    exported_at: datetime = Field(default_factory=datetime.now)
    metadata: SessionMetadata
    messages: list[Message] = Field(default_factory=list)


class CompactionReason(str, Enum):
    """Why compaction was or was not deemed necessary."""

    DISABLED = "disabled"
    NOT_ENOUGH_MESSAGES = "not_enough_messages"
    THRESHOLD_EXCEEDED = "threshold_exceeded"
    WITHIN_THRESHOLD = "within_threshold"


class CompactionCheck(BaseModel):
    """Outcome of the compaction decision."""

    model_config = ConfigDict(use_enum_values=True)

    needed: bool
    reason: CompactionReason
    usage_percent: float | None = None


class CompactionResult(BaseModel):
    """Outcome of a compaction run."""

    summary: str = ""
    first_kept_index: int = 0
    tokens_before: int = 0
    tokens_after: int = 0
    compacted: bool = False


class CompactionStats(BaseModel):
    """Cumulative compaction statistics for one session."""

    compaction_count: int = 0
    total_tokens_before: int = 0
    total_tokens_after: int = 0
    last_compaction_at: datetime | None = None


class WindowStats(BaseModel):
    """Size and composition of a message list."""

    total_tokens: int = 0
    message_count: int = 0
    system: int = 0
    user: int = 0
    assistant: int = 0
    tool: int = 0
    needs_trim: bool = False


class ContextUsage(BaseModel):
    """Token footprint of a message list against a context window."""

    current_tokens: int = 0
    max_tokens: int = 128000
    trigger_threshold: float = 0.80

    @property
    def usage_percent(self) -> float:
        """Get usage as a fraction of the context window."""
        if self.max_tokens == 0:
            return 0.0
        return self.current_tokens / self.max_tokens

    @property
    def over_threshold(self) -> bool:
        """Check whether usage exceeds the trigger threshold."""
        return self.usage_percent > self.trigger_threshold

    @property
    def over_budget(self) -> bool:
        """Check whether the list no longer fits the context window."""
        return self.current_tokens > self.max_tokens

    @property
    def tokens_remaining(self) -> int:
        """Get remaining token capacity."""
        return max(0, self.max_tokens - self.current_tokens)

    def format_status(self) -> str:
        """Format a status string."""
        percent = self.usage_percent * 100
        return f"{self.current_tokens:,}/{self.max_tokens:,} ({percent:.1f}%)"
