"""Tests for webhook signature verification and branch filtering."""

import hashlib
import hmac

import pytest

from binarydeploy.dispatch import compute_signature, extract_branch, is_allowed_branch, verify_signature
from binarydeploy.errors import SignatureError

BODY = b'{"ref":"refs/heads/main","repository":{"name":"x","clone_url":"U"},"head_commit":{"id":"c","message":"m"}}'


def _flip_hex_char(signature: str, index: int) -> str:
    prefix, digest = signature.split("=", 1)
    replacement = "0" if digest[index] != "0" else "1"
    return f"{prefix}={digest[:index]}{replacement}{digest[index + 1:]}"


class TestSignature:
    """Tests for compute_signature() and verify_signature()."""

    def test_matches_hmac_sha256(self):
        expected = hmac.new(b"s", BODY, hashlib.sha256).hexdigest()
        assert compute_signature(BODY, "s") == f"sha256={expected}"

    def test_valid_signature_accepted(self):
        verify_signature(BODY, compute_signature(BODY, "s"), "s")

    @pytest.mark.parametrize("index", [0, 17, 63])
    def test_single_altered_hex_char_rejected(self, index: int):
        tampered = _flip_hex_char(compute_signature(BODY, "s"), index)

        with pytest.raises(SignatureError, match="Invalid signature"):
            verify_signature(BODY, tampered, "s")

    def test_signature_over_raw_body(self):
        # Same JSON, different bytes: the signature must not match
        reformatted = BODY.replace(b",", b", ")

        with pytest.raises(SignatureError):
            verify_signature(reformatted, compute_signature(BODY, "s"), "s")

    def test_wrong_secret_rejected(self):
        with pytest.raises(SignatureError):
            verify_signature(BODY, compute_signature(BODY, "other"), "s")

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header_rejected_with_secret(self, header: str | None):
        with pytest.raises(SignatureError, match="Missing signature"):
            verify_signature(BODY, header, "s")

    @pytest.mark.parametrize("header", [None, "sha256=garbage"])
    def test_open_mode_skips_checks(self, header: str | None):
        verify_signature(BODY, header, "")


class TestBranches:
    """Tests for extract_branch() and is_allowed_branch()."""

    @pytest.mark.parametrize(
        ("ref", "branch"),
        [
            ("refs/heads/main", "main"),
            ("refs/heads/feature/login", "feature/login"),
            ("refs/tags/v1.0", "refs/tags/v1.0"),
            ("main", "main"),
        ],
    )
    def test_extract_branch(self, ref: str, branch: str):
        assert extract_branch(ref) == branch

    @pytest.mark.parametrize("branch", ["feature-x", "feature-"])
    def test_prefix_pattern_matches(self, branch: str):
        assert is_allowed_branch(branch, ["feature-*"])

    def test_prefix_pattern_rejects_other_prefix(self):
        assert not is_allowed_branch("hotfix-x", ["feature-*"])

    @pytest.mark.parametrize("branch", ["main", "anything", ""])
    def test_empty_allow_list_matches_everything(self, branch: str):
        assert is_allowed_branch(branch, [])

    def test_exact_match_only_without_star(self):
        assert is_allowed_branch("main", ["main", "develop"])
        assert not is_allowed_branch("main-old", ["main"])
