"""Target repository deployment.

A deployment brings the target checkout up to date, reads its
``deploy.config``, runs the build command and hands the run command to the
process supervisor, which replaces whatever was running before.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from binarydeploy.config import DESCRIPTOR_NAME, DeploymentConfig, load_deploy_config
from binarydeploy.deploy.commands import run_shell
from binarydeploy.git import clone_or_update, head_commit
from binarydeploy.process import ProcessSupervisor

logger = logging.getLogger(__name__)


@dataclass
class DeploymentResult:
    """Outcome of a successful deployment."""

    repo_url: str
    commit: str
    pid: int
    working_dir: Path
    config: DeploymentConfig


class Deployer:
    """Builds the target repository and starts it under the supervisor."""

    def __init__(self, supervisor: ProcessSupervisor, deploy_dir: Path):
        self.supervisor = supervisor
        self.deploy_dir = Path(deploy_dir)

    @property
    def repo_dir(self) -> Path:
        return self.deploy_dir / "repo"

    def resolve_working_dir(self, config: DeploymentConfig) -> Path:
        """Resolve the descriptor's working_dir against the checkout."""
        working_dir = Path(config.working_dir or "./")
        if not working_dir.is_absolute():
            working_dir = self.repo_dir / working_dir
        return working_dir.resolve()

    async def deploy(self, repo_url: str) -> DeploymentResult:
        """Deploy the latest commit of ``repo_url``.

        Raises:
            GitError: If the checkout cannot be cloned or updated.
            ConfigError: If ``deploy.config`` is missing or invalid.
            BuildError: If the build command fails.
            ProcessSpawnError: If the run command cannot be started.
        """
        logger.info(f"Starting deployment process for {repo_url}")
        self.deploy_dir.mkdir(parents=True, exist_ok=True)

        await clone_or_update(repo_url, self.repo_dir)
        commit = await head_commit(self.repo_dir)

        config = load_deploy_config(self.repo_dir / DESCRIPTOR_NAME)
        await run_shell(config.build_command, self.repo_dir)

        working_dir = self.resolve_working_dir(config)
        process = await self.supervisor.start_process(config, working_dir)

        logger.info(f"Deployed {repo_url} at {commit[:8]} as pid {process.pid}")
        return DeploymentResult(
            repo_url=repo_url,
            commit=commit,
            pid=process.pid,
            working_dir=working_dir,
            config=config,
        )
