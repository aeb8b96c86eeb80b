"""Webhook dispatch.

Every delivery goes through the same checks, in order:

1. Only POST is accepted (405)
2. The ``X-Hub-Signature-256`` HMAC must match the raw body (401)
3. The body must be a push payload with ref, repository name and head
   commit id (400)
4. The pushed branch must be on the allow-list, otherwise the delivery is
   acknowledged with 200 and ignored
5. ``repository.clone_url`` picks the engine: the self-update URL or the
   target URL. Unknown repositories are acknowledged with 200 and ignored

Filtered deliveries still get a 2xx so the sender does not redeliver them.
The response is sent as soon as the job is handed to its slot; build,
deploy and update failures are logged and never reach the sender.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field, ValidationError

from binarydeploy.config import AgentSettings
from binarydeploy.deploy import Deployer
from binarydeploy.dispatch.signature import extract_branch, is_allowed_branch, verify_signature
from binarydeploy.dispatch.slot import JobSlot, SubmitResult
from binarydeploy.errors import PayloadError, SignatureError
from binarydeploy.updater import SelfUpdateEngine

logger = logging.getLogger(__name__)


class Repository(BaseModel):
    name: str = Field(min_length=1)
    clone_url: str = ""


class HeadCommit(BaseModel):
    id: str = Field(min_length=1)
    message: str = ""


class WebhookPayload(BaseModel):
    """The parts of a push event the agent cares about."""

    ref: str = Field(min_length=1)
    repository: Repository
    head_commit: HeadCommit

    @property
    def branch(self) -> str:
        return extract_branch(self.ref)


class DispatchOutcome(str, Enum):
    """How an accepted delivery was routed."""

    DEPLOY = "deploy"
    SELF_UPDATE = "self_update"
    BRANCH_FILTERED = "branch_filtered"
    NOT_CONFIGURED = "not_configured"


@dataclass
class DispatchResponse:
    """HTTP status and plain-text body for one delivery."""

    status_code: int
    message: str
    outcome: DispatchOutcome | None = None


def parse_payload(body: bytes) -> WebhookPayload:
    """Parse a raw push payload.

    Raises:
        PayloadError: On invalid JSON or missing required fields, including ``{}``.
    """
    try:
        return WebhookPayload.model_validate_json(body)
    except ValidationError as err:
        raise PayloadError(f"Invalid payload: {err.error_count()} validation error(s)") from err


class DispatchGateway:
    """Authenticates webhook deliveries and routes them to an engine."""

    def __init__(
        self,
        settings: AgentSettings,
        deployer: Deployer,
        updater: SelfUpdateEngine,
    ):
        self.settings = settings
        self.deployer = deployer
        self.updater = updater
        self.deploy_slot = JobSlot("deploy")
        self.self_update_slot = JobSlot("self-update")

    def handle(self, method: str, body: bytes, signature: str | None) -> DispatchResponse:
        """Run one delivery through the checks and dispatch it."""
        if method.upper() != "POST":
            return DispatchResponse(405, "Method not allowed")

        try:
            verify_signature(body, signature, self.settings.secret)
            payload = parse_payload(body)
        except (SignatureError, PayloadError) as err:
            logger.warning(f"Rejected webhook: {err}")
            return DispatchResponse(err.status_code, str(err))

        branch = payload.branch
        if not is_allowed_branch(branch, self.settings.allowed_branches):
            logger.info(f"Branch {branch} is not in allowed branches")
            return DispatchResponse(
                200,
                f"Branch {branch} is not configured for auto-deployment",
                DispatchOutcome.BRANCH_FILTERED,
            )

        logger.info(
            f"Received push event for branch {branch}, repository {payload.repository.name} "
            f"(commit {payload.head_commit.id[:8]})"
        )
        return self._route(payload)

    def _route(self, payload: WebhookPayload) -> DispatchResponse:
        clone_url = payload.repository.clone_url
        branch = payload.branch
        label = f"{payload.repository.name}@{payload.head_commit.id[:8]}"

        if self.settings.self_update_repo_url and clone_url == self.settings.self_update_repo_url:
            result = self.self_update_slot.submit(
                lambda: self.updater.update(clone_url, branch),
                label,
            )
            return DispatchResponse(
                200,
                self._started_message("Self-update", branch, result),
                DispatchOutcome.SELF_UPDATE,
            )

        if self.settings.target_repo_url and clone_url == self.settings.target_repo_url:
            result = self.deploy_slot.submit(lambda: self.deployer.deploy(clone_url), label)
            return DispatchResponse(
                200,
                self._started_message("Deployment", branch, result),
                DispatchOutcome.DEPLOY,
            )

        logger.info(f"Unknown repository: {clone_url}")
        return DispatchResponse(
            200,
            "Repository not configured for deployment",
            DispatchOutcome.NOT_CONFIGURED,
        )

    @staticmethod
    def _started_message(kind: str, branch: str, result: SubmitResult) -> str:
        if result == SubmitResult.QUEUED:
            return f"{kind} queued for branch {branch}"
        return f"{kind} started for branch {branch}"

    async def wait_idle(self) -> None:
        """Wait for both slots to drain."""
        await self.deploy_slot.wait_idle()
        await self.self_update_slot.wait_idle()

    async def shutdown(self) -> None:
        await self.deploy_slot.cancel()
        await self.self_update_slot.cancel()
