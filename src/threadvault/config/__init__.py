"""Configuration loading and schema for threadvault."""

from threadvault.config.loader import (
    ConfigurationError,
    clear_config_cache,
    get_config,
    get_config_sources,
    load_config,
)
from threadvault.config.schema import (
    CompactionConfig,
    Config,
    LoggingConfig,
    ProviderConfig,
    SessionsConfig,
    WindowConfig,
)

__all__ = [
    "CompactionConfig",
    "Config",
    "ConfigurationError",
    "LoggingConfig",
    "ProviderConfig",
    "SessionsConfig",
    "WindowConfig",
    "clear_config_cache",
    "get_config",
    "get_config_sources",
    "load_config",
]
