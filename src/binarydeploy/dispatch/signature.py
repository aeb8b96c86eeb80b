"""Webhook signature verification and branch filtering."""

import hashlib
import hmac
from typing import Final

from binarydeploy.errors import SignatureError

SIGNATURE_HEADER: Final = "X-Hub-Signature-256"
SIGNATURE_PREFIX: Final = "sha256="
BRANCH_REF_PREFIX: Final = "refs/heads/"


def compute_signature(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` HMAC signature of ``body``."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(body: bytes, signature: str | None, secret: str) -> None:
    """Check ``signature`` against the raw request body.

    An empty secret disables checking entirely (open mode), in which case the
    header is not required either.

    Raises:
        SignatureError: If the header is missing or does not match.
    """
    if not secret:
        return

    if not signature:
        raise SignatureError("Missing signature")

    expected = compute_signature(body, secret)
    if not hmac.compare_digest(signature.encode(), expected.encode()):
        raise SignatureError("Invalid signature")


def extract_branch(ref: str) -> str:
    return ref.removeprefix(BRANCH_REF_PREFIX)


def is_allowed_branch(branch: str, allowed_branches: list[str]) -> bool:
    """Match ``branch`` against the allow-list.

    An empty list allows every branch. Entries ending in ``*`` match by
    prefix (``feature-*`` matches ``feature-x`` and ``feature-``).
    """
    if not allowed_branches:
        return True

    for allowed in allowed_branches:
        if allowed.endswith("*"):
            if branch.startswith(allowed[:-1]):
                return True
        elif branch == allowed:
            return True

    return False
