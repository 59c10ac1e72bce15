"""
Errors raised when a summary model cannot be reached or refuses a request.

LiteLLM exceptions are mapped onto a small FailureType vocabulary so the
compactor can decide whether to fall back to extractive summaries.
"""

from enum import Enum

from litellm.exceptions import (
    APIConnectionError,
    APIError,
    AuthenticationError as LiteLLMAuthError,
    ContextWindowExceededError,
    RateLimitError as LiteLLMRateLimitError,
    ServiceUnavailableError,
    Timeout,
)


class FailureType(Enum):
    """Classification of provider failures."""

    RATE_LIMIT = "rate_limit"
    AUTH_ERROR = "auth_error"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    CONTEXT_LENGTH = "context_length"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


class ProviderError(Exception):
    """A completion request failed; ``failure_type`` says how."""

    default_failure_type = FailureType.UNKNOWN

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        failure_type: FailureType | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.failure_type = failure_type or self.default_failure_type


class AuthenticationError(ProviderError):
    """API key invalid or missing."""

    default_failure_type = FailureType.AUTH_ERROR


class RateLimitError(ProviderError):
    """Provider rate limit exceeded."""

    default_failure_type = FailureType.RATE_LIMIT


class ContextLengthExceededError(ProviderError):
    """Request exceeded the model's context length."""

    default_failure_type = FailureType.CONTEXT_LENGTH


class NetworkError(ProviderError):
    """Connection refused, timed out, or service unavailable."""

    default_failure_type = FailureType.NETWORK_ERROR


_ERROR_CLASSES: dict[FailureType, type[ProviderError]] = {
    FailureType.AUTH_ERROR: AuthenticationError,
    FailureType.RATE_LIMIT: RateLimitError,
    FailureType.CONTEXT_LENGTH: ContextLengthExceededError,
    FailureType.NETWORK_ERROR: NetworkError,
}


# Checked in order; the first matching LiteLLM type wins
_LITELLM_FAILURES: tuple[tuple[tuple[type[Exception], ...], FailureType], ...] = (
    ((LiteLLMRateLimitError,), FailureType.RATE_LIMIT),
    ((LiteLLMAuthError,), FailureType.AUTH_ERROR),
    ((ContextWindowExceededError,), FailureType.CONTEXT_LENGTH),
    ((APIConnectionError, ServiceUnavailableError, Timeout), FailureType.NETWORK_ERROR),
)


def classify_error(error: Exception) -> FailureType:
    """Map any exception to a FailureType, falling back to HTTP status for APIError."""
    if isinstance(error, ProviderError):
        return error.failure_type

    for error_types, failure_type in _LITELLM_FAILURES:
        if isinstance(error, error_types):
            return failure_type

    status = getattr(error, "status_code", None) if isinstance(error, APIError) else None
    if not status:
        return FailureType.UNKNOWN
    if status >= 500:
        return FailureType.SERVER_ERROR
    if status >= 400:
        return FailureType.INVALID_REQUEST
    return FailureType.UNKNOWN


def wrap_error(error: Exception, provider: str | None = None) -> ProviderError:
    """Return ``error`` as the ProviderError subclass matching its failure type."""
    if isinstance(error, ProviderError):
        return error
    failure_type = classify_error(error)
    error_class = _ERROR_CLASSES.get(failure_type, ProviderError)
    return error_class(str(error), provider=provider, failure_type=failure_type)
