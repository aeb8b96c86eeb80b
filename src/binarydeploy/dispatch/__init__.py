"""Webhook authentication and dispatch."""

from binarydeploy.dispatch.gateway import (
    DispatchGateway,
    DispatchOutcome,
    DispatchResponse,
    WebhookPayload,
    parse_payload,
)
from binarydeploy.dispatch.signature import (
    SIGNATURE_HEADER,
    compute_signature,
    extract_branch,
    is_allowed_branch,
    verify_signature,
)
from binarydeploy.dispatch.slot import JobSlot, SubmitResult

__all__ = [
    "DispatchGateway",
    "DispatchOutcome",
    "DispatchResponse",
    "WebhookPayload",
    "parse_payload",
    "SIGNATURE_HEADER",
    "compute_signature",
    "extract_branch",
    "is_allowed_branch",
    "verify_signature",
    "JobSlot",
    "SubmitResult",
]
