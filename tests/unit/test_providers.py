"""
Unit tests for the threadvault provider layer.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from litellm.exceptions import APIConnectionError
from litellm.exceptions import RateLimitError as LiteLLMRateLimitError

from threadvault.config import ProviderConfig
from threadvault.providers import (
    AuthenticationError,
    ChatMessage,
    CompletionResponse,
    FailureType,
    NetworkError,
    ProviderError,
    ProviderManager,
    RateLimitError,
    TokenUsage,
    classify_error,
    wrap_error,
)


def make_response(content="Hello!", finish_reason="stop", usage=True):
    """Build an object shaped like a LiteLLM ModelResponse."""
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15) if usage else None,
    )


# =============================================================================
# Model Tests
# =============================================================================


class TestModels:
    """Tests for provider request and response types."""

    def test_chat_message_to_dict(self):
        """Test conversion to a LiteLLM message."""
        assert ChatMessage.user("Hi").to_dict() == {"role": "user", "content": "Hi"}

    def test_default_total(self):
        """Test that total is computed from input and output."""
        assert TokenUsage(input_tokens=100, output_tokens=50).total_tokens == 150

    def test_explicit_total(self):
        """Test that an explicit total is kept."""
        assert TokenUsage(input_tokens=100, output_tokens=50, total_tokens=200).total_tokens == 200

    def test_response_text_from_blocks(self):
        """Test that text blocks are joined and other blocks skipped."""
        response = CompletionResponse(
            content=[
                {"type": "text", "text": "Hello "},
                {"type": "tool_use", "id": "t1"},
                {"type": "text", "text": "world"},
            ],
            model="openai/gpt-4o-mini",
        )
        assert response.text == "Hello world"


# =============================================================================
# Exception Tests
# =============================================================================


class TestExceptions:
    """Tests for provider exceptions."""

    def test_own_errors_keep_type(self):
        """Test classifying threadvault errors."""
        assert classify_error(AuthenticationError("Invalid key")) == FailureType.AUTH_ERROR
        assert classify_error(RateLimitError("Slow down")) == FailureType.RATE_LIMIT
        assert classify_error(ProviderError("Odd")) == FailureType.UNKNOWN

    def test_classify_litellm_errors(self):
        """Test classifying LiteLLM exceptions."""
        rate_limited = LiteLLMRateLimitError(message="Too many", llm_provider="openai", model="gpt-4o")
        disconnected = APIConnectionError(message="Refused", llm_provider="openai", model="gpt-4o")

        assert classify_error(rate_limited) == FailureType.RATE_LIMIT
        assert classify_error(disconnected) == FailureType.NETWORK_ERROR

    def test_classify_unknown(self):
        """Test that arbitrary exceptions are unknown."""
        assert classify_error(RuntimeError("boom")) == FailureType.UNKNOWN

    def test_wrap_error(self):
        """Test wrapping picks the matching subclass."""
        error = APIConnectionError(message="Refused", llm_provider="openai", model="gpt-4o")

        wrapped = wrap_error(error, "openai")

        assert isinstance(wrapped, NetworkError)
        assert wrapped.provider == "openai"
        assert wrapped.failure_type == FailureType.NETWORK_ERROR

    def test_wrap_existing_error(self):
        """Test that provider errors pass through unchanged."""
        error = AuthenticationError("Invalid key", provider="anthropic")
        assert wrap_error(error) is error

    def test_wrap_unknown(self):
        """Test that unknown failures become the base error."""
        wrapped = wrap_error(ValueError("bad"), "openai")
        assert type(wrapped) is ProviderError
        assert str(wrapped) == "bad"


# =============================================================================
# Provider Manager Tests
# =============================================================================


class TestProviderManager:
    """Tests for ProviderManager."""

    @pytest.fixture
    def manager(self) -> ProviderManager:
        return ProviderManager(
            ProviderConfig(default="openai/gpt-4o-mini", aliases={"fast": "groq/llama-3.1-8b"})
        )

    def test_resolve_model_default(self, manager):
        """Test resolving the default model."""
        assert manager.resolve_model(None) == "openai/gpt-4o-mini"
        assert manager.resolve_model("default") == "openai/gpt-4o-mini"

    def test_resolve_model_alias(self, manager):
        """Test resolving an alias."""
        assert manager.resolve_model("fast") == "groq/llama-3.1-8b"

    def test_resolve_model_direct(self, manager):
        """Test that full model names pass through."""
        assert manager.resolve_model("anthropic/claude-3-haiku") == "anthropic/claude-3-haiku"

    def test_extract_provider(self, manager):
        """Test extracting the provider prefix."""
        assert manager._extract_provider("openai/gpt-4o") == "openai"
        assert manager._extract_provider("gpt-4o") == "unknown"

    def test_parse_response(self, manager):
        """Test parsing a LiteLLM response."""
        response = manager._parse_response(make_response(), "openai/gpt-4o-mini")

        assert response.text == "Hello!"
        assert response.model == "openai/gpt-4o-mini"
        assert response.finish_reason == "stop"
        assert response.usage.total_tokens == 15

    def test_parse_response_without_usage(self, manager):
        """Test parsing a response with no usage or content."""
        response = manager._parse_response(
            make_response(content=None, finish_reason=None, usage=False), "m"
        )

        assert response.text == ""
        assert response.finish_reason == "unknown"
        assert response.usage.total_tokens == 0

    @pytest.mark.asyncio
    async def test_complete(self, manager):
        """Test a completion request through LiteLLM."""
        mock = AsyncMock(return_value=make_response("Summary."))

        with patch("threadvault.providers.manager.acompletion", mock):
            response = await manager.complete(
                [ChatMessage.user("Summarize")], model="fast", temperature=0.3, max_tokens=500
            )

        assert response.text == "Summary."
        mock.assert_awaited_once_with(
            model="groq/llama-3.1-8b",
            messages=[{"role": "user", "content": "Summarize"}],
            temperature=0.3,
            max_tokens=500,
        )

    @pytest.mark.asyncio
    async def test_complete_wraps_errors(self, manager):
        """Test that LiteLLM failures surface as provider errors."""
        error = APIConnectionError(message="Refused", llm_provider="openai", model="gpt-4o-mini")

        with patch("threadvault.providers.manager.acompletion", AsyncMock(side_effect=error)):
            with pytest.raises(NetworkError) as exc_info:
                await manager.complete([ChatMessage.user("Hi")])

        assert exc_info.value.provider == "openai"
