"""
Provider data models for threadvault.

Defines the request and response types of the completion capability.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class ChatMessage:
    """Message sent to a completion provider."""

    role: str  # "system" | "user" | "assistant"
    content: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to LiteLLM-compatible dict."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        """Create a user message."""
        return cls(role="user", content=content)


@dataclass
class TokenUsage:
    """Token usage reported by the provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self) -> None:
        if self.total_tokens == 0:
            self.total_tokens = self.input_tokens + self.output_tokens


@dataclass
class CompletionResponse:
    """Unified completion response.

    ``content`` is either a plain string or a list of typed content blocks;
    ``text`` joins the text blocks either way.
    """

    content: str | list[dict[str, Any]]
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = "unknown"
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def text(self) -> str:
        """Text content of the response."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            block.get("text") or "" for block in self.content if block.get("type") == "text"
        )
