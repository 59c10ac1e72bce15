"""
threadvault provider layer.

Completion capability via LiteLLM, consumed by delegated summarization.
"""

from threadvault.providers.exceptions import (
    AuthenticationError,
    ContextLengthExceededError,
    FailureType,
    NetworkError,
    ProviderError,
    RateLimitError,
    classify_error,
    wrap_error,
)
from threadvault.providers.manager import ProviderManager
from threadvault.providers.models import ChatMessage, CompletionResponse, TokenUsage

__all__ = [
    # Exceptions
    "AuthenticationError",
    "ContextLengthExceededError",
    "FailureType",
    "NetworkError",
    "ProviderError",
    "RateLimitError",
    "classify_error",
    "wrap_error",
    # Manager
    "ProviderManager",
    # Models
    "ChatMessage",
    "CompletionResponse",
    "TokenUsage",
]
