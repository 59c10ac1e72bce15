"""
Pytest configuration and fixtures for threadvault tests.
"""

import os
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from typer.testing import CliRunner

from threadvault.config import clear_config_cache
from threadvault.memory import Message


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def workspace(temp_dir: Path) -> Path:
    """Provide an empty workspace directory."""
    workspace_dir = temp_dir / "workspace"
    workspace_dir.mkdir()
    return workspace_dir


@pytest.fixture
def mock_threadvault_home(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point THREADVAULT_HOME at a temp directory and isolate env overrides."""
    home = temp_dir / ".threadvault"
    home.mkdir()
    for name in list(os.environ):
        if name.startswith("THREADVAULT_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("THREADVAULT_HOME", str(home))
    monkeypatch.chdir(temp_dir)
    clear_config_cache()

    yield home

    clear_config_cache()


@pytest.fixture
def sample_messages() -> list[Message]:
    """Provide a short alternating conversation."""
    return [
        Message.system("You are a helpful assistant."),
        Message.user("How do I read a file in Python?"),
        Message.assistant("Use open() inside a with block."),
        Message.user("And how do I write JSON?"),
        Message.assistant("Use json.dump with an open file handle."),
    ]


def _make_conversation(count: int, prefix: str = "message") -> list[Message]:
    return [
        Message.user(f"{prefix} {i}") if i % 2 == 0 else Message.assistant(f"{prefix} reply {i}")
        for i in range(count)
    ]


@pytest.fixture
def make_conversation() -> Callable[..., list[Message]]:
    """Provide a factory for alternating user/assistant conversations."""
    return _make_conversation


@pytest.fixture
def conversation() -> list[Message]:
    """Provide a 15-message conversation."""
    return _make_conversation(15)
