"""
Session memory exceptions for threadvault.

Defines the error taxonomy used by the session store and compaction engine.
"""

from pathlib import Path


class SessionError(Exception):
    """Base exception for session memory errors."""

    pass


class SessionNotFoundError(SessionError):
    """Operation targets a session key that is not indexed."""

    def __init__(self, key: str):
        super().__init__(f"Session not found: {key}")
        self.key = key


class SessionCorruptError(SessionError):
    """An index or message file failed to parse or validate."""

    def __init__(self, message: str, path: Path | None = None):
        super().__init__(message)
        self.path = path


class SessionStorageError(SessionError):
    """Filesystem failure other than a missing file.

    Raised when a write, move or delete fails in a way that may lose data.
    """

    def __init__(self, message: str, key: str | None = None, path: Path | None = None):
        super().__init__(message)
        self.key = key
        self.path = path


class SessionKeyConflictError(SessionError):
    """Two distinct session keys map to the same file name."""

    def __init__(self, key: str, existing_key: str):
        super().__init__(
            f"Session key '{key}' maps to the same file as existing session '{existing_key}'"
        )
        self.key = key
        self.existing_key = existing_key


class SummarizationError(SessionError):
    """Delegated summary generation failed or returned unusable output."""

    pass
