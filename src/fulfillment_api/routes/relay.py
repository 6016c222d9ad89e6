"""Authenticated mail relay.

``POST /send`` forwards one message through the configured notifier.
Callers authenticate with ``Authorization: Bearer <RELAY_API_KEY>``. With
no RELAY_API_KEY configured every request is rejected. Each client may send
RELAY_RATE_LIMIT requests (default 30 per minute); more are answered 429.
"""

import secrets

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from fulfillment.config import FulfillmentSettings
from fulfillment.models import DeliveryError
from fulfillment.models.errors import ErrorCode, FulfillmentError
from fulfillment.services.notifier import Notifier
from fulfillment.utils.logging import get_logger
from fulfillment_api.dependencies import get_fulfillment_settings, get_notifier
from fulfillment_api.rate_limit import limiter, relay_rate_limit

logger = get_logger(__name__)

router = APIRouter(tags=["relay"])


class RelayRequest(BaseModel):
    """Message to relay. Needs ``to``, ``subject`` and at least one body."""

    to: str | None = None
    subject: str | None = None
    text: str | None = None
    html: str | None = None


class RelayResponse(BaseModel):
    """Successful relay result."""

    ok: bool = True
    message_id: str


def require_relay_token(
    request: Request,
    settings: FulfillmentSettings = Depends(get_fulfillment_settings),
) -> None:
    """Reject the request unless it carries the relay bearer token."""
    auth = (request.headers.get("Authorization") or "").strip()
    api_key = settings.relay_api_key
    if not api_key:
        logger.warning("Relay request rejected: RELAY_API_KEY is not configured")
        raise FulfillmentError(code=ErrorCode.UNAUTHORIZED)
    if not secrets.compare_digest(auth.encode(), f"Bearer {api_key}".encode()):
        raise FulfillmentError(code=ErrorCode.UNAUTHORIZED)


@router.post(
    "/send",
    summary="Relay an email",
    response_model=RelayResponse,
    responses={
        400: {"description": "Missing to, subject or body"},
        401: {"description": "Missing or wrong bearer token"},
        429: {"description": "Too many requests from this client"},
        502: {"description": "Mail transport failed"},
    },
    dependencies=[Depends(require_relay_token)],
)
@limiter.limit(relay_rate_limit)
async def send_mail(
    request: Request,
    body: RelayRequest,
    notifier: Notifier = Depends(get_notifier),
) -> RelayResponse:
    """Send one message through the configured notifier."""
    if not body.to or not body.subject or (not body.text and not body.html):
        raise FulfillmentError(code=ErrorCode.MISSING_FIELDS)

    try:
        message_id = await notifier.send(body.to, body.subject, body.html, body.text)
    except DeliveryError as e:
        logger.error("Relay send failed: %s", e)
        raise FulfillmentError(
            code=ErrorCode.EMAIL_DELIVERY_FAILED,
            details={"details": str(e)},
        ) from e

    return RelayResponse(message_id=message_id)
