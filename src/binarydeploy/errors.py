"""Exception types raised by the deployment agent.

Webhook-facing errors map to HTTP status codes; everything raised by the
deployment and self-update engines is returned to the direct caller and, for
webhook-triggered work, only logged.
"""


class DeployAgentError(Exception):
    """Base class for all agent errors."""

    pass


class ConfigError(DeployAgentError):
    """Raised when settings or a deploy descriptor cannot be loaded."""

    pass


class SignatureError(DeployAgentError):
    """Raised when a webhook signature is missing or does not match."""

    status_code = 401


class PayloadError(DeployAgentError):
    """Raised when a webhook body is malformed or incomplete."""

    status_code = 400


class GitError(DeployAgentError):
    """Raised when a git operation fails."""

    pass


class BuildError(DeployAgentError):
    """Raised when a build command exits nonzero or times out."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class VerificationError(DeployAgentError):
    """Raised when a built or installed binary fails verification."""

    pass


class ReplaceError(DeployAgentError):
    """Raised when the live binary cannot be swapped for the new build."""

    pass


class RollbackError(DeployAgentError):
    """Raised when the backup binary cannot be restored."""

    pass


class ProcessSpawnError(DeployAgentError):
    """Raised when the run command cannot be started."""

    pass


class ProcessTerminationError(DeployAgentError):
    """Raised when a process survives SIGKILL."""

    def __init__(self, pid: int):
        super().__init__(f"process {pid} still running after termination")
        self.pid = pid
