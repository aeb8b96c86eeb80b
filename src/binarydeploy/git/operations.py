"""Git operations for keeping deployment checkouts current."""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Final

from binarydeploy.errors import GitError

logger = logging.getLogger(__name__)

# Clones of large repositories can be slow
CLONE_TIMEOUT: Final = 300.0
DEFAULT_TIMEOUT: Final = 60.0


async def _run_git_command(
    args: list[str], cwd: Path | None = None, timeout: float = DEFAULT_TIMEOUT
) -> tuple[str, str, int]:
    """Run a git command and return stdout, stderr, and return code."""
    cmd = ["git"] + args
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as err:
        raise GitError(f"Failed to run git command: {err}") from err

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError as err:
        proc.kill()
        await proc.wait()
        raise GitError(f"Git command timed out: {' '.join(cmd)}") from err

    return (
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
        proc.returncode or 0,
    )


async def _check_git(args: list[str], cwd: Path | None = None, timeout: float = DEFAULT_TIMEOUT) -> str:
    stdout, stderr, rc = await _run_git_command(args, cwd, timeout)
    if rc != 0:
        raise GitError(f"git {args[0]} failed (exit {rc}): {stderr.strip()}")
    return stdout


async def clone(repo_url: str, dest: Path) -> None:
    """Clone ``repo_url`` into ``dest``."""
    logger.info(f"Cloning repository {repo_url} to {dest}")
    dest.parent.mkdir(parents=True, exist_ok=True)
    await _check_git(["clone", repo_url, str(dest)], timeout=CLONE_TIMEOUT)


async def fetch(repo_dir: Path, remote: str = "origin") -> None:
    await _check_git(["fetch", remote], cwd=repo_dir, timeout=CLONE_TIMEOUT)


async def reset_hard(repo_dir: Path, ref: str = "origin/HEAD") -> None:
    """Discard local state and move the checkout to ``ref``."""
    await _check_git(["reset", "--hard", ref], cwd=repo_dir)


async def clone_or_update(repo_url: str, repo_dir: Path) -> None:
    """Clone the repository if absent, else fetch and hard-reset it.

    An existing checkout is reset to the remote's default branch tip
    (``origin/HEAD``), discarding any local modifications. A directory that
    is not a checkout of its own is removed and cloned afresh.

    Raises:
        GitError: If any git command fails.
    """
    if repo_dir.exists() and not await is_checkout(repo_dir):
        logger.warning(f"{repo_dir} is not a git checkout, removing it and cloning again")
        shutil.rmtree(repo_dir)

    if not repo_dir.exists():
        await clone(repo_url, repo_dir)
        return

    logger.info(f"Updating repository in {repo_dir}")
    await fetch(repo_dir)
    await reset_hard(repo_dir)


async def head_commit(repo_dir: Path) -> str:
    """Return the full hash of the checked-out commit."""
    stdout = await _check_git(["rev-parse", "HEAD"], cwd=repo_dir)
    return stdout.strip()


async def is_checkout(path: Path) -> bool:
    """Check that ``path`` is the top level of its own working tree."""
    if not (path / ".git").exists():
        return False
    return await is_git_repo(path)


async def is_git_repo(path: Path) -> bool:
    """Check if the given path is inside a git repository."""
    try:
        stdout, stderr, rc = await _run_git_command(
            ["rev-parse", "--is-inside-work-tree"], path
        )
        return rc == 0 and stdout.strip() == "true"
    except GitError:
        return False
