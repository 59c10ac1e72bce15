"""
Session lifecycle events for threadvault.

Handlers subscribe per event type and receive a ``SessionEventData``.
Handlers may be plain functions or coroutine functions; a failing handler is
logged and never affects the operation that emitted the event.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from threadvault.memory.models import SessionMetadata

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    """Session lifecycle event types."""

    CREATED = "session_created"  # First save of a new key
    UPDATED = "session_updated"  # Messages or metadata changed
    DELETED = "session_deleted"  # Files and index entry removed
    ARCHIVED = "session_archived"  # Moved to the archive tier
    RESTORED = "session_restored"  # Moved back from the archive tier
    PINNED = "session_pinned"
    UNPINNED = "session_unpinned"
    STATUS_CHANGED = "session_status_changed"  # Any status transition
    ACCESSED = "session_accessed"  # Full session read
    COMPACTED = "session_compacted"  # Compacted history persisted


class SessionEventData(BaseModel):
    """Payload delivered to event handlers."""

    model_config = ConfigDict(use_enum_values=True)

    event: SessionEvent
    key: str
    timestamp: datetime = Field(default_factory=datetime.now)
    metadata: SessionMetadata | None = None
    details: dict[str, Any] = Field(default_factory=dict)


EventHandler = Callable[[SessionEventData], None | Awaitable[None]]


class EventEmitter:
    """Registry of session event handlers."""

    def __init__(self) -> None:
        self._handlers: dict[SessionEvent, list[EventHandler]] = {}

    def on(self, event: SessionEvent | str, handler: EventHandler) -> None:
        """Subscribe a handler to an event type."""
        self._handlers.setdefault(SessionEvent(event), []).append(handler)

    def off(self, event: SessionEvent | str, handler: EventHandler) -> bool:
        """Unsubscribe a handler.

        Returns:
            True if the handler was registered.
        """
        handlers = self._handlers.get(SessionEvent(event), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def handler_count(self, event: SessionEvent | str) -> int:
        """Number of handlers subscribed to an event type."""
        return len(self._handlers.get(SessionEvent(event), []))

    async def emit(
        self,
        event: SessionEvent,
        key: str,
        metadata: SessionMetadata | None = None,
        **details: Any,
    ) -> None:
        """Deliver an event to every subscribed handler in registration order.

        Args:
            event: Event type.
            key: Session key the event concerns.
            metadata: Metadata snapshot after the operation, if any.
            **details: Event-specific extras.
        """
        handlers = list(self._handlers.get(event, []))
        if not handlers:
            return

        data = SessionEventData(event=event, key=key, metadata=metadata, details=details)
        for handler in handlers:
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Event handler error for {event.value}: {e}")
