"""
Configuration loader for threadvault.

Configuration is assembled from layers, later layers winning:

1. Schema defaults
2. Global file: ``$THREADVAULT_HOME/config.yaml`` (default ``~/.threadvault``)
3. Project file: nearest ``.threadvault/project.yaml`` above the working directory
4. Environment: ``THREADVAULT_<SECTION>__<KEY>=<value>``
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from threadvault.config.merger import deep_merge, set_nested_value
from threadvault.config.schema import Config
from threadvault.storage.paths import find_project_config, get_global_config_path

ENV_PREFIX = "THREADVAULT_"
ENV_NESTING = "__"

# Read directly by path helpers, never mapped onto config keys
_RESERVED_ENV = {"THREADVAULT_HOME"}


class ConfigurationError(Exception):
    """Raised when a configuration source cannot be read or fails validation."""

    def __init__(self, message: str, path: Path | None = None):
        super().__init__(message)
        self.path = path


@dataclass
class ConfigLayer:
    """One configuration source and the values it contributes."""

    name: str
    path: Path | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.path is not None or bool(self.data)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Read a YAML mapping from disk.

    A missing or blank file yields an empty mapping.

    Raises:
        ConfigurationError: If the file is unreadable, malformed, or not a mapping.
    """
    try:
        content = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}", path=path) from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}", path=path) from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}", path=path)
    return content


def parse_env_value(value: str) -> Any:
    """
    Interpret an environment value as a YAML scalar or flow collection.

    ``0.9`` becomes a float, ``true``/``off`` booleans, ``[a, b]`` a list.
    Anything YAML cannot parse stays a plain string.
    """
    try:
        return yaml.safe_load(value)
    except yaml.YAMLError:
        return value


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """
    Collect ``THREADVAULT_*`` variables into a nested override mapping.

    A double underscore separates nesting levels so keys keep their single
    underscores: ``THREADVAULT_COMPACTION__TRIGGER_THRESHOLD=0.9`` sets
    ``compaction.trigger_threshold``.
    """
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}

    for name, value in sorted(environ.items()):
        if not name.startswith(ENV_PREFIX) or name in _RESERVED_ENV:
            continue
        key_path = name[len(ENV_PREFIX) :].lower().replace(ENV_NESTING, ".")
        if key_path:
            set_nested_value(overrides, key_path, parse_env_value(value))

    return overrides


def collect_layers(
    project_path: Path | None = None,
    skip_project: bool = False,
    skip_env: bool = False,
) -> list[ConfigLayer]:
    """
    Read every configuration source that applies, lowest priority first.

    Args:
        project_path: Directory to start the project file search from. Defaults to cwd.
        skip_project: Ignore the project file.
        skip_env: Ignore environment variables.
    """
    global_path = get_global_config_path()
    layers = [
        ConfigLayer(
            "global",
            global_path if global_path.exists() else None,
            load_yaml_file(global_path),
        )
    ]

    if not skip_project:
        project_file = find_project_config(project_path)
        layers.append(
            ConfigLayer("project", project_file, load_yaml_file(project_file) if project_file else {})
        )

    if not skip_env:
        layers.append(ConfigLayer("env", data=env_overrides()))

    return layers


def load_config(
    project_path: Path | None = None,
    skip_project: bool = False,
    skip_env: bool = False,
) -> Config:
    """
    Merge all layers over the schema defaults and validate the result.

    Raises:
        ConfigurationError: If a source is unreadable or the merged values are invalid.
    """
    merged = Config().model_dump()
    for layer in collect_layers(project_path, skip_project, skip_env):
        merged = deep_merge(merged, layer.data)

    try:
        return Config.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def get_config_sources(project_path: Path | None = None) -> dict[str, Path | None]:
    """Map each file-backed source to its path, or None when absent."""
    global_path = get_global_config_path()
    return {
        "global": global_path if global_path.exists() else None,
        "project": find_project_config(project_path),
    }


_cached_config: Config | None = None


def get_config(reload: bool = False) -> Config:
    """
    Return the merged configuration, loading it on first use.

    Only the CLI relies on this cache; library classes take explicit config objects.
    """
    global _cached_config

    if _cached_config is None or reload:
        _cached_config = load_config()
    return _cached_config


def clear_config_cache() -> None:
    """Forget the cached configuration."""
    global _cached_config
    _cached_config = None
