"""
threadvault - Session persistence and context retention

Durable storage for conversational message histories with a metadata
index, an archive tier, and context-window compaction.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("threadvault")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = [
    "__version__",
]
