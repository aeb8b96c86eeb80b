"""Target repository deployment."""

from binarydeploy.deploy.commands import run_shell, smoke_test
from binarydeploy.deploy.deployer import Deployer, DeploymentResult

__all__ = [
    "Deployer",
    "DeploymentResult",
    "run_shell",
    "smoke_test",
]
