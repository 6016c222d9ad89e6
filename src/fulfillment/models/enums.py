"""Enumeration types for fulfillment data models."""

from enum import Enum


class EventKind(str, Enum):
    """Classified Stripe event type."""

    COMPLETED = "completed"
    ASYNC_PAYMENT_SUCCEEDED = "async_payment_succeeded"
    OTHER = "other"


# Stripe event type -> classified kind
STRIPE_EVENT_KINDS: dict[str, EventKind] = {
    "checkout.session.completed": EventKind.COMPLETED,
    "checkout.session.async_payment_succeeded": EventKind.ASYNC_PAYMENT_SUCCEEDED,
}


class PaymentStatus(str, Enum):
    """Checkout session payment status as reported by Stripe."""

    PAID = "paid"
    UNPAID = "unpaid"
    NO_PAYMENT_REQUIRED = "no_payment_required"


class FulfillmentState(str, Enum):
    """Lifecycle state of a persisted fulfillment record."""

    UNSEEN = "unseen"
    IN_PROGRESS = "in_progress"
    FULFILLED = "fulfilled"
    FAILED = "failed"


class BeginOutcome(str, Enum):
    """Result of the atomic check-and-set on the idempotency store."""

    BEGUN = "begun"
    ALREADY_FULFILLED = "already_fulfilled"
    ALREADY_IN_PROGRESS = "already_in_progress"


class ItemFailureReason(str, Enum):
    """Why a single purchased item was not notified."""

    MISSING_ASSET = "missing_asset"
    DELIVERY_FAILED = "delivery_failed"
    DELIVERY_REJECTED = "delivery_rejected"


class IgnoreReason(str, Enum):
    """Why an event was acknowledged without fulfillment."""

    UNHANDLED_EVENT_TYPE = "unhandled_event_type"
    FOREIGN_SESSION = "foreign_session"
    PAYMENT_NOT_PAID = "payment_not_paid"
    NO_EMAIL = "no_email"
    MALFORMED_EVENT = "malformed_event"


class AssetIdSource(str, Enum):
    """Where the digital asset id of a purchased item is read from."""

    PRODUCT_METADATA = "product_metadata"
    SESSION_METADATA = "session_metadata"


class IdempotencyKeyField(str, Enum):
    """Which event field keys the fulfillment record."""

    SESSION_ID = "session_id"
    EVENT_ID = "event_id"
