"""Stripe webhook endpoint.

No JWT or API key: the payload is authenticated by its Stripe signature.

Status codes tell Stripe whether to redeliver:
- 200 for every outcome a redelivery cannot change (fulfilled, duplicate,
  ignored, missing email, rejected delivery)
- 400 for a missing or invalid signature
- 500 for transient failures (Stripe, mail transport or idempotency store)
  and for duplicates that arrive while another delivery holds the session
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from fulfillment.models import AuthenticityFailure, RetryableError
from fulfillment.models.errors import ErrorCode, FulfillmentError
from fulfillment.services.fulfillment_engine import FulfillmentEngine
from fulfillment.services.stripe_service import StripeService, StripeServiceError
from fulfillment.utils.logging import get_logger, log_webhook_event
from fulfillment_api.dependencies import get_fulfillment_engine, get_stripe_service

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


class WebhookResponse(BaseModel):
    """Webhook acknowledgement. Null fields are omitted from the JSON body."""

    received: bool
    fulfilled: bool | None = None
    reason: str | None = None


@router.post(
    "/webhooks/stripe",
    summary="Receive Stripe webhook events",
    description="""
Endpoint for Stripe checkout events. Handles:
- checkout.session.completed
- checkout.session.async_payment_succeeded

Each fulfillable line item of a paid session gets one email with its
download link.

**Idempotent**: a session is fulfilled at most once; redeliveries return
`{"received": true, "fulfilled": true}`.
""",
    response_model=WebhookResponse,
    response_model_exclude_none=True,
    responses={
        200: {"description": "Event acknowledged (fulfilled, duplicate or ignored)"},
        400: {"description": "Invalid or missing Stripe signature"},
        500: {"description": "Transient failure, Stripe will redeliver"},
    },
)
async def handle_stripe_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe_service),
    engine: FulfillmentEngine = Depends(get_fulfillment_engine),
) -> WebhookResponse:
    """Verify, classify and fulfill one Stripe event."""
    signature = request.headers.get("Stripe-Signature")
    payload = await request.body()

    try:
        verified = stripe_service.verify_webhook_signature(payload, signature)
    except StripeServiceError as e:
        logger.error("Webhook secret unavailable: %s", e)
        raise FulfillmentError(
            code=ErrorCode.TRANSIENT_FAILURE,
            details={"reason": "webhook_secret_unavailable"},
        ) from e

    if isinstance(verified, AuthenticityFailure):
        logger.warning("Webhook signature verification failed: %s", verified.reason)
        raise FulfillmentError(
            code=ErrorCode.INVALID_WEBHOOK_SIGNATURE,
            details={"message": verified.reason},
        )

    log_webhook_event(logger, verified.type, verified.id, result="received")

    try:
        outcome = await engine.process(verified)
    except RetryableError as e:
        raise FulfillmentError(
            code=ErrorCode.TRANSIENT_FAILURE,
            details={"reason": str(e)},
        ) from e

    if outcome.retry:
        raise FulfillmentError(
            code=ErrorCode.TRANSIENT_FAILURE,
            details={"reason": outcome.reason or "retry"},
        )

    return WebhookResponse(
        received=outcome.received,
        fulfilled=outcome.fulfilled,
        reason=outcome.reason,
    )
