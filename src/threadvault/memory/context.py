"""
Token estimation and sliding window for threadvault.

Estimates the token footprint of message lists and trims them to a window.
"""

import logging
import math
from collections.abc import Sequence

from threadvault.config.schema import WindowConfig
from threadvault.memory.models import (
    ContextUsage,
    Message,
    MessageRole,
    WindowStats,
)

logger = logging.getLogger(__name__)

# Roles that take part in the conversation proper; anything else is system-like
_CONVERSATIONAL_ROLES = {
    MessageRole.USER.value,
    MessageRole.ASSISTANT.value,
    MessageRole.TOOL_RESULT.value,
}


class TokenCounter:
    """Approximate token counter.

    The default heuristic charges one token per ``chars_per_token`` characters
    of text plus a fixed overhead per message for role and framing. It is a
    cheap upper-bound-ish estimate, not a billing figure. Setting
    ``counter="tiktoken"`` swaps the character heuristic for a tiktoken
    encoding while keeping the per-message overhead.
    """

    def __init__(self, config: WindowConfig | None = None):
        """Initialize the token counter.

        Args:
            config: Window configuration. Defaults to schema defaults.
        """
        self.config = config or WindowConfig()
        self._encoding = None

        if self.config.counter == "tiktoken":
            import tiktoken

            self._encoding = tiktoken.get_encoding("cl100k_base")

    def count(self, text: str) -> int:
        """Count tokens in text.

        Args:
            text: Text to count.

        Returns:
            Token count.
        """
        if not text:
            return 0
        if self._encoding is not None:
            return len(self._encoding.encode(text))
        return math.ceil(len(text) / self.config.chars_per_token)

    def count_message(self, message: Message) -> int:
        """Count tokens for a single message including framing overhead."""
        return self.count(message.text) + self.config.message_overhead

    def count_messages(self, messages: Sequence[Message]) -> int:
        """Count tokens in a list of messages.

        Args:
            messages: Messages to estimate.

        Returns:
            Total token count.
        """
        return sum(self.count_message(message) for message in messages)


_default_counter: TokenCounter | None = None


def estimate_tokens(messages: Sequence[Message], counter: TokenCounter | None = None) -> int:
    """Estimate the token footprint of a message list.

    Args:
        messages: Messages to estimate. Never mutated.
        counter: Counter to use. Defaults to the heuristic counter.

    Returns:
        Estimated token count.
    """
    global _default_counter

    if counter is None:
        if _default_counter is None:
            _default_counter = TokenCounter()
        counter = _default_counter
    return counter.count_messages(messages)


def _is_system_like(message: Message) -> bool:
    return message.role not in _CONVERSATIONAL_ROLES


class SlidingWindow:
    """Sliding window over a message list.

    Classifies a list against a context budget and trims it to the most
    recent messages when it grows past ``max_messages``.
    """

    def __init__(self, config: WindowConfig | None = None, counter: TokenCounter | None = None):
        """Initialize the sliding window.

        Args:
            config: Window configuration. Defaults to schema defaults.
            counter: Token counter. Built from ``config`` if not provided.
        """
        self.config = config or WindowConfig()
        self.counter = counter or TokenCounter(self.config)

    def estimate_tokens(self, messages: Sequence[Message]) -> int:
        """Estimate tokens for a message list."""
        return self.counter.count_messages(messages)

    def check_budget(
        self,
        messages: Sequence[Message],
        context_window: int,
        trigger_threshold: float = 0.80,
    ) -> ContextUsage:
        """Classify a message list against a context window.

        Args:
            messages: Messages to measure.
            context_window: Model context window in tokens.
            trigger_threshold: Fraction of the window considered "nearly full".

        Returns:
            Context usage for the list.
        """
        return ContextUsage(
            current_tokens=self.estimate_tokens(messages),
            max_tokens=context_window,
            trigger_threshold=trigger_threshold,
        )

    def needs_trim(self, messages: Sequence[Message]) -> bool:
        """Check whether the list exceeds the window size."""
        return len(messages) > self.config.max_messages

    def trim(self, messages: Sequence[Message]) -> list[Message]:
        """Trim messages to the window.

        System-like messages are kept ahead of the most recent conversational
        messages when ``preserve_system_messages`` is set; otherwise the last
        ``max_messages`` messages are kept.

        Args:
            messages: Messages to trim. Never mutated.

        Returns:
            New trimmed list (a copy of the input when no trim is needed).
        """
        if not self.needs_trim(messages):
            return list(messages)

        max_messages = self.config.max_messages
        system = [m for m in messages if _is_system_like(m)]

        if not self.config.preserve_system_messages or not system:
            return list(messages[-max_messages:])

        if len(system) >= max_messages:
            return system[-max_messages:]

        others = [m for m in messages if not _is_system_like(m)]
        keep = min(self.config.keep_recent_messages, max_messages - len(system))
        recent = others[-keep:] if keep > 0 else []

        logger.debug(
            f"Trimmed window from {len(messages)} to {len(system) + len(recent)} messages"
        )
        return system + recent

    def get_stats(self, messages: Sequence[Message]) -> WindowStats:
        """Get size and composition stats for a message list.

        Pure read; the input is never mutated.
        """
        roles = [m.role for m in messages]
        return WindowStats(
            total_tokens=self.estimate_tokens(messages),
            message_count=len(messages),
            system=sum(1 for m in messages if _is_system_like(m)),
            user=roles.count(MessageRole.USER.value),
            assistant=roles.count(MessageRole.ASSISTANT.value),
            tool=roles.count(MessageRole.TOOL_RESULT.value),
            needs_trim=self.needs_trim(messages),
        )
