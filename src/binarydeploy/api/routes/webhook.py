"""Webhook route."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from binarydeploy.api.deps import get_gateway
from binarydeploy.dispatch import SIGNATURE_HEADER, DispatchGateway

logger = logging.getLogger(__name__)
router = APIRouter()


# Every method is routed here so the gateway decides on 405 itself
@router.api_route("/webhook", methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
async def webhook(
    request: Request,
    gateway: Annotated[DispatchGateway, Depends(get_gateway)],
) -> PlainTextResponse:
    """Receive a push webhook.

    The signature is computed over the raw body, so the body is read as bytes
    and parsed only after verification.
    """
    body = await request.body()
    response = gateway.handle(
        request.method,
        body,
        request.headers.get(SIGNATURE_HEADER),
    )

    headers = {"Allow": "POST"} if response.status_code == 405 else None
    return PlainTextResponse(response.message, status_code=response.status_code, headers=headers)
