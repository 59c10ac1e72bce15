"""Validated configuration sections. Every field has a default, so an empty file is valid."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ProviderConfig(BaseModel):
    """Model used by abstractive and structured compaction."""

    model_config = ConfigDict(extra="allow")

    default: str = "openai/gpt-4o-mini"
    aliases: dict[str, str] = Field(default_factory=dict)


class CompactionConfig(BaseModel):
    """When and how old messages are folded into a summary."""

    enabled: bool = True
    mode: Literal["extractive", "abstractive", "structured"] = "abstractive"
    trigger_threshold: float = Field(default=0.80, ge=0.5, le=0.95)
    min_messages_before_compact: int = Field(default=10, ge=1)
    keep_recent_messages: int = Field(default=10, ge=0)
    summary_model: str | None = None
    summary_max_tokens: int = Field(default=500, ge=1)
    extractive_max_chars: int = Field(default=300, ge=1)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)


class WindowConfig(BaseModel):
    """Token estimation and sliding window configuration."""

    counter: Literal["heuristic", "tiktoken"] = "heuristic"
    chars_per_token: int = Field(default=4, ge=1)
    message_overhead: int = Field(default=10, ge=0)
    max_messages: int = Field(default=100, ge=1)
    keep_recent_messages: int = Field(default=20, ge=0)
    preserve_system_messages: bool = True


class SessionsConfig(BaseModel):
    """Session store configuration."""

    model_config = ConfigDict(extra="allow")

    workspace: str = "."
    default_list_limit: int = Field(default=50, ge=1)
    archive_after_days: int | None = Field(default=None, ge=1)
    atomic_writes: bool = True


class LoggingConfig(BaseModel):
    """Level for the CLI's Rich log handler."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"


class Config(BaseModel):
    """
    Top-level configuration.

    Unknown sections are preserved so a shared config file can carry settings
    for other tools.
    """

    model_config = ConfigDict(extra="allow")

    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    window: WindowConfig = Field(default_factory=WindowConfig)
    providers: ProviderConfig = Field(default_factory=ProviderConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
