"""Fixtures for integration tests."""

import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create an initialized git repository."""
    git(tmp_path, "init")
    git(tmp_path, "config", "user.email", "test@example.com")
    git(tmp_path, "config", "user.name", "Test")
    return tmp_path


@pytest.fixture
def git_commit(git_repo: Path) -> Callable[[str], str]:
    """Return a function to create commits in the test repo."""

    def _commit(message: str) -> str:
        git(git_repo, "add", "-A")
        git(git_repo, "commit", "--allow-empty", "-m", message)
        return git(git_repo, "rev-parse", "HEAD")

    return _commit
