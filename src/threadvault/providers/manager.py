"""
Provider manager for threadvault.

Completion capability backed by LiteLLM. Used by the abstractive and
structured compaction strategies; everything else in threadvault runs offline.
"""

import logging
from typing import Any

import litellm
from litellm import acompletion

from threadvault.config.schema import ProviderConfig
from threadvault.providers.exceptions import wrap_error
from threadvault.providers.models import ChatMessage, CompletionResponse, TokenUsage

logger = logging.getLogger(__name__)

# Drop params a given provider does not support instead of failing
litellm.drop_params = True


class ProviderManager:
    """Summary-model gateway: alias resolution plus LiteLLM completion calls."""

    def __init__(self, config: ProviderConfig | None = None):
        self.config = config or ProviderConfig()

    def resolve_model(self, model: str | None) -> str:
        """Map ``None``, ``"default"`` or a configured alias to a LiteLLM model id."""
        if model in (None, "default"):
            return self.config.default

        resolved = self.config.aliases.get(model, model)
        if resolved != model:
            logger.debug(f"Model alias '{model}' -> '{resolved}'")
        return resolved

    @staticmethod
    def _extract_provider(model: str) -> str:
        provider, sep, _ = model.partition("/")
        return provider if sep else "unknown"

    async def complete(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> CompletionResponse:
        """
        Run one non-streaming completion.

        Extra keyword arguments go straight to ``litellm.acompletion``; a falsy
        ``max_tokens`` leaves the provider default in place.

        Raises:
            ProviderError: Any LiteLLM failure, classified by ``wrap_error``.
        """
        resolved_model = self.resolve_model(model)
        logger.debug(f"Requesting completion from {resolved_model} ({len(messages)} messages)")

        request_kwargs: dict[str, Any] = {
            "model": resolved_model,
            "messages": [message.to_dict() for message in messages],
            "temperature": temperature,
            **kwargs,
        }
        if max_tokens:
            request_kwargs["max_tokens"] = max_tokens

        try:
            response = await acompletion(**request_kwargs)
        except Exception as e:
            raise wrap_error(e, self._extract_provider(resolved_model)) from e

        return self._parse_response(response, resolved_model)

    def _parse_response(self, response: Any, model: str) -> CompletionResponse:
        raw_usage = getattr(response, "usage", None)
        usage = (
            TokenUsage(
                input_tokens=raw_usage.prompt_tokens or 0,
                output_tokens=raw_usage.completion_tokens or 0,
                total_tokens=raw_usage.total_tokens or 0,
            )
            if raw_usage is not None
            else TokenUsage()
        )

        choice = response.choices[0]
        return CompletionResponse(
            content=choice.message.content or "",
            model=model,
            usage=usage,
            finish_reason=choice.finish_reason or "unknown",
        )
