"""Tests for webhook dispatch routing."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from binarydeploy.config import AgentSettings
from binarydeploy.deploy import Deployer
from binarydeploy.dispatch import DispatchGateway, DispatchOutcome, compute_signature, parse_payload
from binarydeploy.errors import PayloadError
from binarydeploy.updater import SelfUpdateEngine

BODY = b'{"ref":"refs/heads/main","repository":{"name":"x","clone_url":"U"},"head_commit":{"id":"c","message":"m"}}'


def payload(ref: str = "refs/heads/main", clone_url: str = "U") -> bytes:
    return json.dumps(
        {
            "ref": ref,
            "repository": {"name": "x", "clone_url": clone_url},
            "head_commit": {"id": "c", "message": "m"},
        }
    ).encode()


@pytest.fixture
def deployer() -> Mock:
    mock = Mock(spec=Deployer)
    mock.deploy = AsyncMock()
    return mock


@pytest.fixture
def updater() -> Mock:
    mock = Mock(spec=SelfUpdateEngine)
    mock.update = AsyncMock()
    return mock


def make_gateway(deployer: Mock, updater: Mock, **overrides) -> DispatchGateway:
    values = {
        "secret": "s",
        "target_repo_url": "U",
        "self_update_repo_url": "V",
        "allowed_branches": ["main"],
        "binary_path": Path("/usr/local/bin/binarydeploy"),
    }
    values.update(overrides)
    return DispatchGateway(AgentSettings(**values), deployer, updater)


class TestParsePayload:
    """Tests for parse_payload()."""

    def test_valid_payload(self):
        parsed = parse_payload(BODY)

        assert parsed.branch == "main"
        assert parsed.repository.name == "x"
        assert parsed.repository.clone_url == "U"
        assert parsed.head_commit.id == "c"

    def test_extra_fields_ignored(self):
        data = json.loads(BODY)
        data["pusher"] = {"name": "octocat"}

        assert parse_payload(json.dumps(data).encode()).head_commit.message == "m"

    @pytest.mark.parametrize(
        "body",
        [
            b"{}",
            b"not json",
            b"",
            b'{"ref":"refs/heads/main"',
            b'{"ref":"refs/heads/main","repository":{"name":"x"}}',
            b'{"ref":"","repository":{"name":"x"},"head_commit":{"id":"c"}}',
            b'{"ref":"refs/heads/main","repository":{"name":""},"head_commit":{"id":"c"}}',
            b'{"ref":"refs/heads/main","repository":{"name":"x"},"head_commit":{"id":""}}',
            b'{"ref":"refs/heads/main","repository":{"name":"x"},"head_commit":null}',
        ],
    )
    def test_invalid_payloads(self, body: bytes):
        with pytest.raises(PayloadError):
            parse_payload(body)


class TestDispatchGateway:
    """Tests for DispatchGateway.handle()."""

    async def test_target_push_dispatches_deployer(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater)

        response = gateway.handle("POST", BODY, compute_signature(BODY, "s"))

        assert response.status_code == 200
        assert response.outcome == DispatchOutcome.DEPLOY
        assert "Deployment started for branch main" in response.message

        await gateway.wait_idle()
        deployer.deploy.assert_awaited_once_with("U")
        updater.update.assert_not_called()

    async def test_filtered_branch_is_acknowledged(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater)
        body = payload(ref="refs/heads/staging")

        response = gateway.handle("POST", body, compute_signature(body, "s"))

        assert response.status_code == 200
        assert response.outcome == DispatchOutcome.BRANCH_FILTERED
        assert "staging is not configured for auto-deployment" in response.message

        await gateway.wait_idle()
        deployer.deploy.assert_not_called()
        updater.update.assert_not_called()

    async def test_self_update_push_dispatches_updater(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater)
        body = payload(clone_url="V")

        response = gateway.handle("POST", body, compute_signature(body, "s"))

        assert response.status_code == 200
        assert response.outcome == DispatchOutcome.SELF_UPDATE

        await gateway.wait_idle()
        updater.update.assert_awaited_once_with("V", "main")
        deployer.deploy.assert_not_called()

    async def test_unknown_repository_is_acknowledged(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater)
        body = payload(clone_url="https://example.com/other.git")

        response = gateway.handle("POST", body, compute_signature(body, "s"))

        assert response.status_code == 200
        assert response.outcome == DispatchOutcome.NOT_CONFIGURED
        assert response.message == "Repository not configured for deployment"
        deployer.deploy.assert_not_called()

    async def test_unconfigured_urls_never_match_empty_clone_url(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater, target_repo_url="", self_update_repo_url="")
        body = payload(clone_url="")

        response = gateway.handle("POST", body, compute_signature(body, "s"))

        assert response.outcome == DispatchOutcome.NOT_CONFIGURED

    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
    def test_non_post_rejected(self, deployer: Mock, updater: Mock, method: str):
        gateway = make_gateway(deployer, updater)

        assert gateway.handle(method, BODY, compute_signature(BODY, "s")).status_code == 405

    def test_missing_signature_rejected(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater)

        response = gateway.handle("POST", BODY, None)

        assert response.status_code == 401
        deployer.deploy.assert_not_called()

    def test_bad_signature_checked_before_payload(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater)

        assert gateway.handle("POST", b"{}", "sha256=deadbeef").status_code == 401

    def test_empty_object_rejected(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater)

        assert gateway.handle("POST", b"{}", compute_signature(b"{}", "s")).status_code == 400

    async def test_open_mode_accepts_unsigned(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater, secret="")

        response = gateway.handle("POST", BODY, None)

        assert response.status_code == 200
        await gateway.wait_idle()
        deployer.deploy.assert_awaited_once_with("U")

    async def test_empty_allow_list_accepts_any_branch(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater, allowed_branches=[])
        body = payload(ref="refs/heads/experiment")

        response = gateway.handle("POST", body, compute_signature(body, "s"))

        assert response.outcome == DispatchOutcome.DEPLOY
        await gateway.wait_idle()

    async def test_overlapping_deliveries_are_queued(self, deployer: Mock, updater: Mock):
        gateway = make_gateway(deployer, updater)
        signature = compute_signature(BODY, "s")

        first = gateway.handle("POST", BODY, signature)
        second = gateway.handle("POST", BODY, signature)

        assert "started" in first.message
        assert "queued" in second.message

        await gateway.wait_idle()
        assert deployer.deploy.await_count == 2

    async def test_background_failure_not_surfaced(self, deployer: Mock, updater: Mock):
        deployer.deploy.side_effect = RuntimeError("build failed")
        gateway = make_gateway(deployer, updater)

        response = gateway.handle("POST", BODY, compute_signature(BODY, "s"))

        assert response.status_code == 200
        await gateway.wait_idle()
        assert gateway.deploy_slot.failed == 1
