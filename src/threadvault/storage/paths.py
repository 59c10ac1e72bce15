"""
Filesystem locations used by threadvault.

Two roots matter: the user home (``~/.threadvault``, holding ``config.yaml``) and
each workspace, whose sessions live under ``<workspace>/.sessions``::

    .sessions/
        index.json
        telegram_42.json
        telegram_42.meta.json
        archive/
            discord_7.json
"""

import os
from pathlib import Path

SESSIONS_DIRNAME = ".sessions"
ARCHIVE_DIRNAME = "archive"
INDEX_FILENAME = "index.json"

PROJECT_CONFIG = Path(".threadvault") / "project.yaml"


def get_threadvault_home() -> Path:
    """Home directory, from ``THREADVAULT_HOME`` when set, else ``~/.threadvault``."""
    override = os.environ.get("THREADVAULT_HOME")
    if not override:
        return Path.home() / ".threadvault"
    return Path(override).expanduser().resolve()


def get_global_config_path() -> Path:
    return get_threadvault_home() / "config.yaml"


def find_project_config(start_path: Path | None = None) -> Path | None:
    """
    Locate the nearest ``.threadvault/project.yaml``.

    The search begins at ``start_path`` (the working directory by default) and
    climbs toward the filesystem root, stopping at the first match.
    """
    origin = Path(start_path or Path.cwd()).resolve()

    return next(
        (d / PROJECT_CONFIG for d in (origin, *origin.parents) if (d / PROJECT_CONFIG).is_file()),
        None,
    )


def get_sessions_dir(workspace: Path | str) -> Path:
    return expand_path(workspace) / SESSIONS_DIRNAME


def get_archive_dir(workspace: Path | str) -> Path:
    return get_sessions_dir(workspace) / ARCHIVE_DIRNAME


def get_index_path(workspace: Path | str) -> Path:
    return get_sessions_dir(workspace) / INDEX_FILENAME


def expand_path(path: str | Path) -> Path:
    """Absolute form of ``path``; strings also get ``$VAR`` substitution."""
    if isinstance(path, str):
        path = os.path.expandvars(path)
    return Path(path).expanduser().resolve()


def ensure_directory(path: Path) -> Path:
    """Create ``path`` and any missing parents, then return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path
