"""Pydantic models for checkout fulfillment."""

from .enums import (
    AssetIdSource,
    BeginOutcome,
    EventKind,
    FulfillmentState,
    IdempotencyKeyField,
    IgnoreReason,
    ItemFailureReason,
    PaymentStatus,
    STRIPE_EVENT_KINDS,
)
from .errors import (
    DeliveryError,
    ErrorCode,
    ErrorResponse,
    FulfillmentError,
    IdempotencyStoreError,
    RetryableError,
)
from .fulfillment import (
    BeginResult,
    FulfillmentEvent,
    FulfillmentOutcome,
    FulfillmentRecord,
    FulfillmentResult,
    IgnoredEvent,
    ItemFailure,
    PurchasedItem,
)
from .stripe_webhook import (
    AuthenticityFailure,
    CheckoutSessionPayload,
    CustomerDetails,
    StripeEvent,
)

__all__ = [
    # Enums
    "AssetIdSource",
    "BeginOutcome",
    "EventKind",
    "FulfillmentState",
    "IdempotencyKeyField",
    "IgnoreReason",
    "ItemFailureReason",
    "PaymentStatus",
    "STRIPE_EVENT_KINDS",
    # Errors
    "DeliveryError",
    "ErrorCode",
    "ErrorResponse",
    "FulfillmentError",
    "IdempotencyStoreError",
    "RetryableError",
    # Fulfillment
    "BeginResult",
    "FulfillmentEvent",
    "FulfillmentOutcome",
    "FulfillmentRecord",
    "FulfillmentResult",
    "IgnoredEvent",
    "ItemFailure",
    "PurchasedItem",
    # Stripe
    "AuthenticityFailure",
    "CheckoutSessionPayload",
    "CustomerDetails",
    "StripeEvent",
]
