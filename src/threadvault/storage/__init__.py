"""Storage utilities for threadvault."""

from threadvault.storage.paths import (
    ARCHIVE_DIRNAME,
    INDEX_FILENAME,
    SESSIONS_DIRNAME,
    ensure_directory,
    expand_path,
    find_project_config,
    get_archive_dir,
    get_global_config_path,
    get_index_path,
    get_sessions_dir,
    get_threadvault_home,
)

__all__ = [
    "ARCHIVE_DIRNAME",
    "INDEX_FILENAME",
    "SESSIONS_DIRNAME",
    "ensure_directory",
    "expand_path",
    "find_project_config",
    "get_archive_dir",
    "get_global_config_path",
    "get_index_path",
    "get_sessions_dir",
    "get_threadvault_home",
]
