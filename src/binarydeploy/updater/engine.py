"""Self-update engine.

Rebuilds the agent from its own repository and swaps the executable on disk.
The running process keeps its in-memory image; the new binary takes effect on
the next start (or immediately, when the repository's ``deploy.config``
names a ``restart_command``).

The update flow is:
1. Clone (or fetch and hard-reset) the update repository into a scratch dir
2. Read the repository's ``deploy.config``
3. Back up the live binary (always before anything destructive)
4. Run the build command
5. Verify the built artifact
6. Copy it next to the live binary and atomically rename it into place
7. Smoke-test the installed binary
8. Roll back from the backup if step 6 or 7 fails
9. Remove the scratch directory, whatever happened

The rename in step 6 is only atomic when the temporary copy and the live
binary share a filesystem, which is why the copy is written as a sibling.
"""

import asyncio
import contextlib
import logging
import os
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from binarydeploy.config import DESCRIPTOR_NAME, DeploymentConfig, load_deploy_config
from binarydeploy.deploy.commands import SMOKE_TEST_TIMEOUT, run_shell, smoke_test
from binarydeploy.errors import ReplaceError, RollbackError, VerificationError
from binarydeploy.git import clone_or_update, head_commit

logger = logging.getLogger(__name__)

BACKUP_SUFFIX: Final = ".backup"
NEW_SUFFIX: Final = ".new"
ROLLBACK_SUFFIX: Final = ".rollback"
EXECUTABLE_MODE: Final = 0o755

# Pre-install verification gets more time than the post-install smoke test
VERIFY_TIMEOUT: Final = 10.0


@dataclass
class SelfUpdateResult:
    """Result of a successful self-update."""

    repo_url: str
    branch: str
    commit: str
    binary_path: Path
    backup_path: Path
    restart_launched: bool = False


def _sibling(path: Path, suffix: str) -> Path:
    return path.with_name(path.name + suffix)


class SelfUpdateEngine:
    """Replaces the agent's own executable with a freshly built one.

    Calls to ``update`` on one engine are serialized: a second call waits for
    the first to finish, so two updates never share the backup or scratch
    paths.
    """

    def __init__(
        self,
        binary_path: Path,
        self_update_dir: Path,
        backup_path: Path | None = None,
        smoke_timeout: float = SMOKE_TEST_TIMEOUT,
    ):
        self.binary_path = Path(binary_path)
        self.self_update_dir = Path(self_update_dir)
        self.temp_dir = self.self_update_dir / "temp"
        self._default_backup_path = Path(backup_path) if backup_path else _sibling(self.binary_path, BACKUP_SUFFIX)
        self.backup_path = self._default_backup_path
        self.smoke_timeout = smoke_timeout
        self._update_lock = asyncio.Lock()

    @property
    def update_in_progress(self) -> bool:
        return self._update_lock.locked()

    def has_backup(self) -> bool:
        return self.backup_path.exists()

    async def update(self, repo_url: str, branch: str = "main") -> SelfUpdateResult:
        """Rebuild from ``repo_url`` and install the result over the live binary.

        Raises:
            GitError: If the update repository cannot be fetched.
            ConfigError: If its ``deploy.config`` is missing or invalid.
            OSError: If the backup cannot be written.
            BuildError: If the build command fails.
            VerificationError: If the artifact or the installed binary is unusable.
            ReplaceError: If the atomic replace fails.
            RollbackError: If restoring the backup after a failed install fails.
        """
        async with self._update_lock:
            try:
                return await self._update(repo_url, branch)
            finally:
                self._cleanup()

    async def _update(self, repo_url: str, branch: str) -> SelfUpdateResult:
        logger.info(f"Starting self-update: repo_url={repo_url} branch={branch}")
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        repo_dir = self.temp_dir / "repo"

        await clone_or_update(repo_url, repo_dir)
        commit = await head_commit(repo_dir)

        config = load_deploy_config(repo_dir / DESCRIPTOR_NAME, require_run_command=False)
        # The descriptor override applies to this update only
        self.backup_path = Path(config.backup_binary) if config.backup_binary else self._default_backup_path

        self._backup_current_binary()

        await run_shell(config.build_command, repo_dir)
        new_binary = self._locate_artifact(repo_dir, config)
        await self._verify_new_binary(new_binary)

        # From here on the live binary may have changed
        try:
            self._replace_binary_atomically(new_binary)
            if not await smoke_test(self.binary_path, self.smoke_timeout):
                raise VerificationError(
                    f"new binary {self.binary_path} failed to run with --version or --help"
                )
        except (ReplaceError, VerificationError) as err:
            logger.error(f"Installed binary unusable, rolling back: {err}")
            try:
                self.rollback()
            except RollbackError as rollback_err:
                logger.error(f"Failed to rollback after failed update: {rollback_err}")
                raise rollback_err from err
            logger.info("Successfully rolled back after failed update")
            raise

        restart_launched = await self._launch_restart(config)

        logger.info(f"Self-update completed successfully at commit {commit[:8]}")
        return SelfUpdateResult(
            repo_url=repo_url,
            branch=branch,
            commit=commit,
            binary_path=self.binary_path,
            backup_path=self.backup_path,
            restart_launched=restart_launched,
        )

    def rollback(self) -> None:
        """Restore the backup over the live binary.

        The backup itself is left in place so rollback can be repeated.

        Raises:
            RollbackError: If there is no backup or it cannot be installed.
        """
        if not self.has_backup():
            raise RollbackError(f"no backup binary found at {self.backup_path}")

        logger.info(f"Rolling back to backup binary {self.backup_path}")
        temp_path = _sibling(self.binary_path, ROLLBACK_SUFFIX)

        try:
            shutil.copyfile(self.backup_path, temp_path)
            temp_path.chmod(EXECUTABLE_MODE)
            os.replace(temp_path, self.binary_path)
        except OSError as err:
            with contextlib.suppress(OSError):
                temp_path.unlink()
            raise RollbackError(f"atomic rollback failed: {err}") from err

        logger.info("Rollback completed successfully")

    def _backup_current_binary(self) -> None:
        logger.info(f"Backing up current binary to {self.backup_path}")
        self.backup_path.parent.mkdir(parents=True, exist_ok=True)

        # A stale backup from an earlier update is replaced, never merged
        if self.backup_path.exists():
            self.backup_path.unlink()

        shutil.copy2(self.binary_path, self.backup_path)

    def _locate_artifact(self, repo_dir: Path, config: DeploymentConfig) -> Path:
        """Find the binary produced by the build command.

        ``-o <path>`` in the build command names the artifact; otherwise it is
        expected at the repository root under the live binary's name.
        """
        parts = shlex.split(config.build_command)
        for flag, value in zip(parts, parts[1:], strict=False):
            if flag == "-o":
                artifact = Path(value)
                return artifact if artifact.is_absolute() else repo_dir / artifact
        return repo_dir / self.binary_path.name

    async def _verify_new_binary(self, binary: Path) -> None:
        if not binary.exists():
            raise VerificationError(f"built binary not found at {binary}")
        if not binary.is_file():
            raise VerificationError(f"built binary {binary} is not a regular file")

        try:
            binary.chmod(EXECUTABLE_MODE)
        except OSError as err:
            raise VerificationError(f"making binary executable: {err}") from err

        if not await smoke_test(binary, VERIFY_TIMEOUT):
            logger.warning(f"Could not verify {binary} with --version or --help")

    def _replace_binary_atomically(self, new_binary: Path) -> None:
        logger.info(f"Replacing binary {self.binary_path} atomically")
        temp_path = _sibling(self.binary_path, NEW_SUFFIX)

        try:
            shutil.copyfile(new_binary, temp_path)
            temp_path.chmod(EXECUTABLE_MODE)
            os.replace(temp_path, self.binary_path)
        except OSError as err:
            with contextlib.suppress(OSError):
                temp_path.unlink()
            raise ReplaceError(f"replacing binary: {err}") from err

    async def _launch_restart(self, config: DeploymentConfig) -> bool:
        if not config.restart_command:
            return False

        logger.info(f"Launching restart command: {config.restart_command}")
        try:
            await asyncio.create_subprocess_shell(
                config.restart_command,
                start_new_session=True,
            )
        except OSError as err:
            logger.error(f"Failed to launch restart command: {err}")
            return False
        return True

    def _cleanup(self) -> None:
        try:
            shutil.rmtree(self.temp_dir)
        except FileNotFoundError:
            pass
        except OSError as err:
            logger.warning(f"Failed to clean up temp directory {self.temp_dir}: {err}")
