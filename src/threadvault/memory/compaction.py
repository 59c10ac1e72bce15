"""
Context compaction for threadvault.

Decides when a message history has outgrown its context budget and
replaces older messages with a summary plus a tail of recent messages.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from threadvault.config.schema import CompactionConfig
from threadvault.memory.context import TokenCounter
from threadvault.memory.exceptions import SummarizationError
from threadvault.memory.models import (
    CompactionCheck,
    CompactionReason,
    CompactionResult,
    Message,
    MessageRole,
)
from threadvault.providers.models import ChatMessage, CompletionResponse

logger = logging.getLogger(__name__)

SUMMARY_LABEL = "[Previous conversation summary]"
SUMMARY_MESSAGE_NAME = "conversation_summary"


class SummaryMode(str, Enum):
    """Available summarization strategies."""

    EXTRACTIVE = "extractive"  # Offline excerpt of recent user requests
    ABSTRACTIVE = "abstractive"  # LLM-written prose summary
    STRUCTURED = "structured"  # LLM-extracted JSON memory


class CompletionCapability(Protocol):
    """External completion capability used for delegated summaries."""

    async def complete(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> CompletionResponse: ...


def format_conversation(messages: Sequence[Message]) -> str:
    """Render messages as ``[role]: text`` blocks for a summarization prompt."""
    return "\n\n".join(f"[{m.role}]: {m.text}" for m in messages)


class Summarizer(ABC):
    """Base class for summarization strategies."""

    @abstractmethod
    async def summarize(
        self, messages: Sequence[Message], instructions: str | None = None
    ) -> str:
        """Summarize a list of messages.

        Args:
            messages: Messages being compacted away.
            instructions: Optional extra focus for the summary.

        Returns:
            Summary text.
        """
        pass


class ExtractiveSummarizer(Summarizer):
    """Deterministic offline summary built from recent user requests."""

    PREFIX = "Previous conversation covered: "
    RECENT_USER_MESSAGES = 5

    def __init__(self, max_chars: int = 300):
        self.max_chars = max_chars

    async def summarize(
        self, messages: Sequence[Message], instructions: str | None = None
    ) -> str:
        return self.extract(messages)

    def extract(self, messages: Sequence[Message]) -> str:
        """Build the extractive summary synchronously."""
        user_texts = [
            m.text for m in messages if m.role == MessageRole.USER.value and m.text
        ][-self.RECENT_USER_MESSAGES :]
        joined = "; ".join(user_texts)

        if len(joined) > self.max_chars:
            joined = joined[: self.max_chars] + "..."
        return f"{self.PREFIX}{joined}"


@dataclass
class SummaryOutcome:
    """Result of a delegated summary attempt."""

    summary: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.summary)


class DelegatingSummarizer(Summarizer):
    """Summarizer that delegates to the external completion capability."""

    ABSTRACTIVE_PROMPT = """Summarize the following conversation in 2-3 concise sentences. Focus on:
1. What the user was trying to accomplish
2. Key decisions, outcomes, or solutions
3. Any important context that should be preserved
{instructions}
Conversation:
{conversation}

Summary:"""

    STRUCTURED_PROMPT = """Extract key information from this conversation in a structured format:

{conversation}
{instructions}
Output JSON format:
{{
  "task": "What the user was trying to do",
  "decisions": ["Key decisions made"],
  "preferences": ["User preferences mentioned"],
  "context": ["Technical context or setup"],
  "pending": ["Any open tasks or follow-ups"]
}}

JSON:"""

    _FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

    def __init__(
        self,
        provider: CompletionCapability,
        mode: SummaryMode | str = SummaryMode.ABSTRACTIVE,
        model: str | None = None,
        max_tokens: int = 500,
        temperature: float = 0.3,
    ):
        """Initialize the delegating summarizer.

        Args:
            provider: Completion capability.
            mode: ``abstractive`` or ``structured``.
            model: Model reference passed to the provider.
            max_tokens: Output token budget for the summary.
            temperature: Sampling temperature.
        """
        mode = SummaryMode(mode)
        if mode == SummaryMode.EXTRACTIVE:
            raise ValueError("DelegatingSummarizer requires abstractive or structured mode")

        self.provider = provider
        self.mode = mode
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    def build_prompt(self, messages: Sequence[Message], instructions: str | None = None) -> str:
        """Build the instruction prompt for the configured mode."""
        template = (
            self.STRUCTURED_PROMPT if self.mode == SummaryMode.STRUCTURED else self.ABSTRACTIVE_PROMPT
        )
        extra = f"\nAdditional focus: {instructions}\n" if instructions else ""
        return template.format(conversation=format_conversation(messages), instructions=extra)

    async def summarize(
        self, messages: Sequence[Message], instructions: str | None = None
    ) -> str:
        """Generate a summary through the provider.

        Raises:
            SummarizationError: If the provider fails or returns nothing.
        """
        prompt = self.build_prompt(messages, instructions)

        try:
            response = await self.provider.complete(
                [ChatMessage.user(prompt)],
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            text = response.text.strip()
        except Exception as e:
            raise SummarizationError(f"Summary generation failed: {e}") from e

        if not text:
            raise SummarizationError("Summary generation returned no text")

        if self.mode == SummaryMode.STRUCTURED:
            return self._normalize_json(text)
        return text

    async def try_summarize(
        self, messages: Sequence[Message], instructions: str | None = None
    ) -> SummaryOutcome:
        """Like ``summarize`` but reports failure in the outcome instead of raising."""
        try:
            return SummaryOutcome(summary=await self.summarize(messages, instructions))
        except SummarizationError as e:
            return SummaryOutcome(error=e)

    def _normalize_json(self, text: str) -> str:
        """Pretty-print JSON output, keeping the raw text when it does not parse."""
        fenced = self._FENCE.match(text)
        candidate = fenced.group(1) if fenced else text
        try:
            return json.dumps(json.loads(candidate), indent=2, ensure_ascii=False)
        except json.JSONDecodeError:
            return text


class SessionCompactor:
    """Compaction engine.

    Holds an extractive summarizer as the guaranteed fallback and, when a
    completion capability is supplied and the mode asks for it, a delegating
    summarizer whose failures never escape ``compact``.
    """

    SUMMARY_OVERHEAD = 20

    def __init__(
        self,
        config: CompactionConfig | None = None,
        provider: CompletionCapability | None = None,
        counter: TokenCounter | None = None,
    ):
        """Initialize the compactor.

        Args:
            config: Compaction configuration. Defaults to schema defaults.
            provider: Optional completion capability for delegated summaries.
            counter: Token counter. Defaults to the heuristic counter.
        """
        self.config = config or CompactionConfig()
        self.counter = counter or TokenCounter()
        self.extractive = ExtractiveSummarizer(max_chars=self.config.extractive_max_chars)
        self.delegate: DelegatingSummarizer | None = None

        if provider is not None and self.config.mode != SummaryMode.EXTRACTIVE.value:
            self.delegate = DelegatingSummarizer(
                provider,
                mode=self.config.mode,
                model=self.config.summary_model,
                max_tokens=self.config.summary_max_tokens,
                temperature=self.config.temperature,
            )

    def estimate_tokens(self, messages: Sequence[Message]) -> int:
        """Estimate tokens for a message list."""
        return self.counter.count_messages(messages)

    def needs_compaction(self, messages: Sequence[Message], context_window: int) -> CompactionCheck:
        """Decide whether a message list should be compacted.

        Args:
            messages: Current message history.
            context_window: Model context window in tokens.

        Returns:
            The decision and its reason.
        """
        if context_window <= 0:
            raise ValueError("context_window must be positive")

        if not self.config.enabled:
            return CompactionCheck(needed=False, reason=CompactionReason.DISABLED)

        if len(messages) < self.config.min_messages_before_compact:
            return CompactionCheck(needed=False, reason=CompactionReason.NOT_ENOUGH_MESSAGES)

        usage_percent = self.estimate_tokens(messages) / context_window
        if usage_percent > self.config.trigger_threshold:
            return CompactionCheck(
                needed=True,
                reason=CompactionReason.THRESHOLD_EXCEEDED,
                usage_percent=usage_percent,
            )

        return CompactionCheck(
            needed=False,
            reason=CompactionReason.WITHIN_THRESHOLD,
            usage_percent=usage_percent,
        )

    async def compact(
        self, messages: Sequence[Message], instructions: str | None = None
    ) -> CompactionResult:
        """Summarize older messages, keeping the most recent tail.

        Safe to call without a prior ``needs_compaction`` check: lists that are
        too short yield a no-op result with ``compacted=False``.

        Args:
            messages: Current message history. Never mutated.
            instructions: Optional extra focus for delegated summaries.

        Returns:
            Compaction result.
        """
        tokens_before = self.estimate_tokens(messages)
        keep_recent = self.config.keep_recent_messages

        if len(messages) < self.config.min_messages_before_compact or keep_recent >= len(messages):
            return CompactionResult(tokens_before=tokens_before, tokens_after=tokens_before)

        first_kept_index = len(messages) - keep_recent
        to_summarize = messages[:first_kept_index]
        kept = messages[first_kept_index:]

        summary = await self._summarize(to_summarize, instructions)
        tokens_after = (
            self.estimate_tokens(kept) + self.counter.count(summary) + self.SUMMARY_OVERHEAD
        )

        return CompactionResult(
            summary=summary,
            first_kept_index=first_kept_index,
            tokens_before=tokens_before,
            tokens_after=tokens_after,
            compacted=True,
        )

    async def _summarize(self, messages: Sequence[Message], instructions: str | None) -> str:
        if self.delegate is not None:
            outcome = await self.delegate.try_summarize(messages, instructions)
            if outcome.ok:
                return outcome.summary  # type: ignore[return-value]
            logger.warning(
                f"{self.delegate.mode.value} summarization failed, falling back to extractive: "
                f"{outcome.error}"
            )
        return self.extractive.extract(messages)

    def apply_compaction(self, messages: list[Message], result: CompactionResult) -> list[Message]:
        """Build the compacted history.

        Pure: callers persist the result and bump the session's compaction
        counter.

        Args:
            messages: The history the result was computed from.
            result: Output of ``compact``.

        Returns:
            Summary message followed by ``messages[first_kept_index:]``, or the
            input unchanged when nothing was compacted.
        """
        if not result.compacted or not result.summary:
            return messages

        summary_message = Message(
            role=MessageRole.USER,
            content=f"{SUMMARY_LABEL}: {result.summary}",
            name=SUMMARY_MESSAGE_NAME,
            timestamp=datetime.now(),
        )
        return [summary_message, *messages[result.first_kept_index :]]
