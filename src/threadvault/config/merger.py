"""Merging of layered configuration mappings."""

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Layer ``override`` on top of ``base``.

    - Scalars and plain lists: override replaces base
    - Dicts: merged recursively
    - ``+key`` with a list: items appended to ``key`` (duplicates skipped)
    - ``-key`` with a list: items removed from ``key``
    - None value: key removed from the result

    Returns a new mapping; neither input is modified.

    Examples:
        >>> deep_merge({"tags": ["a"]}, {"+tags": ["b"]})
        {'tags': ['a', 'b']}
    """
    merged = dict(base)

    for key, value in override.items():
        if key[:1] in ("+", "-") and isinstance(value, list):
            target = key[1:]
            current = merged.get(target)
            if key[0] == "+":
                if isinstance(current, list):
                    merged[target] = current + [item for item in value if item not in current]
                else:
                    merged[target] = list(value)
            elif isinstance(current, list):
                merged[target] = [item for item in current if item not in value]
        elif value is None:
            merged.pop(key, None)
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value

    return merged


def get_nested_value(config: dict[str, Any], key_path: str) -> Any:
    """Read ``compaction.mode``-style paths; None when any segment is missing."""
    current: Any = config
    for key in key_path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def set_nested_value(config: dict[str, Any], key_path: str, value: Any) -> dict[str, Any]:
    """Write a dotted path in place, replacing non-dict intermediates with dicts."""
    *parents, leaf = key_path.split(".")
    current = config
    for key in parents:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[leaf] = value
    return config
