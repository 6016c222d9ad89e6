"""Event classification: verified Stripe event -> FulfillmentEvent or ignore.

Ignored events are still acknowledged with HTTP 200. Rejecting them would
only make Stripe retry a delivery whose outcome cannot change.
"""

import logging

from pydantic import ValidationError

from fulfillment.config import FulfillmentSettings
from fulfillment.models import (
    STRIPE_EVENT_KINDS,
    CheckoutSessionPayload,
    EventKind,
    FulfillmentEvent,
    IgnoredEvent,
    IgnoreReason,
    PaymentStatus,
    StripeEvent,
)

logger = logging.getLogger(__name__)


class EventClassifier:
    """Decide whether a verified event should be fulfilled."""

    def __init__(
        self,
        fulfillable_event_types: frozenset[str],
        required_metadata_key: str | None = None,
    ) -> None:
        self._allowed = fulfillable_event_types
        self._required_metadata_key = required_metadata_key

    @classmethod
    def from_settings(cls, settings: FulfillmentSettings) -> "EventClassifier":
        return cls(
            fulfillable_event_types=settings.fulfillable_event_types,
            required_metadata_key=settings.required_metadata_key,
        )

    def _ignore(self, event: StripeEvent, reason: IgnoreReason) -> IgnoredEvent:
        return IgnoredEvent(event_id=event.id, event_type=event.type, reason=reason)

    def classify(self, event: StripeEvent) -> FulfillmentEvent | IgnoredEvent:
        """Classify a verified event.

        Args:
            event: Event returned by signature verification

        Returns:
            A FulfillmentEvent without items, or the reason it is ignored.
        """
        if event.type not in self._allowed:
            return self._ignore(event, IgnoreReason.UNHANDLED_EVENT_TYPE)

        try:
            session = CheckoutSessionPayload.model_validate(event.data_object)
        except ValidationError as e:
            logger.warning("Malformed checkout session in event %s: %s", event.id, e)
            return self._ignore(event, IgnoreReason.MALFORMED_EVENT)

        if self._required_metadata_key and not session.metadata.get(self._required_metadata_key):
            return self._ignore(event, IgnoreReason.FOREIGN_SESSION)

        if session.payment_status != PaymentStatus.PAID:
            return self._ignore(event, IgnoreReason.PAYMENT_NOT_PAID)

        email = session.resolved_email
        if not email:
            logger.warning(
                "No customer email for session %s (event %s), needs manual follow-up",
                session.id,
                event.id,
            )
            return self._ignore(event, IgnoreReason.NO_EMAIL)

        return FulfillmentEvent(
            event_id=event.id,
            session_id=session.id,
            type=STRIPE_EVENT_KINDS.get(event.type, EventKind.OTHER),
            payment_status=session.payment_status,
            customer_email=email,
            customer_name=session.resolved_name,
            metadata=session.metadata,
        )
