"""Pytest configuration and fixtures."""

import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

from binarydeploy.config import DeploymentConfig


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio as the async backend."""
    return "asyncio"


def _git(repo_path: Path, *args: str) -> None:
    subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=repo_path,
        check=True,
        capture_output=True,
    )


def commit_files(repo_path: Path, files: dict[str, str], message: str = "Update files") -> None:
    """Write ``files`` into the repository and commit them."""
    for name, content in files.items():
        path = repo_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    _git(repo_path, "add", "-A")
    _git(repo_path, "commit", "-m", message)


@pytest.fixture
def make_git_repo(tmp_path: Path) -> Callable[..., Path]:
    """Factory creating a git repository with an initial commit."""

    def factory(files: dict[str, str], name: str = "origin") -> Path:
        repo_path = tmp_path / name
        repo_path.mkdir()
        _git(repo_path, "init")
        _git(repo_path, "config", "user.email", "test@example.com")
        _git(repo_path, "config", "user.name", "Test User")
        commit_files(repo_path, files, "Initial commit")
        return repo_path

    return factory


@pytest.fixture
def sleeper_config() -> DeploymentConfig:
    """A long-running process that is never restarted."""
    return DeploymentConfig(
        build_command="true",
        run_command="sleep 30",
        max_restarts=0,
        restart_delay=0,
    )


@pytest.fixture
def git_commit() -> Callable[..., None]:
    """Commit more files into an existing repository."""
    return commit_files
