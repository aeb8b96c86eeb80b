"""Git operations for deployment and self-update checkouts."""

from binarydeploy.errors import GitError
from binarydeploy.git.operations import (
    clone,
    clone_or_update,
    fetch,
    head_commit,
    is_checkout,
    is_git_repo,
    reset_hard,
)

__all__ = [
    "GitError",
    "clone",
    "clone_or_update",
    "fetch",
    "head_commit",
    "is_checkout",
    "is_git_repo",
    "reset_hard",
]
