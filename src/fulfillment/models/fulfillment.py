"""Fulfillment domain models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    BeginOutcome,
    EventKind,
    FulfillmentState,
    IgnoreReason,
    ItemFailureReason,
    PaymentStatus,
)


class PurchasedItem(BaseModel):
    """One line item of a checkout session."""

    model_config = ConfigDict(frozen=True)

    product_name: str
    digital_asset_id: str | None = None
    line_item_id: str | None = Field(
        default=None,
        description="Stripe line item ID (li_xxx), used to track per-item delivery",
    )

    @property
    def is_fulfillable(self) -> bool:
        return bool(self.digital_asset_id)

    def delivery_key(self, position: int) -> str:
        """Stable key identifying this item within its session."""
        return self.line_item_id or f"{position}:{self.digital_asset_id or self.product_name}"


class FulfillmentEvent(BaseModel):
    """A verified, classified payment event.

    Immutable once built; resolved items are attached with ``with_items``
    which returns a new instance.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str
    session_id: str
    type: EventKind
    payment_status: PaymentStatus
    customer_email: str | None = None
    customer_name: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    items: tuple[PurchasedItem, ...] = ()

    def with_items(self, items: list[PurchasedItem]) -> "FulfillmentEvent":
        return self.model_copy(update={"items": tuple(items)})


class IgnoredEvent(BaseModel):
    """Classifier decision to acknowledge an event without side effects."""

    model_config = ConfigDict(frozen=True)

    event_id: str | None = None
    event_type: str | None = None
    reason: IgnoreReason


class ItemFailure(BaseModel):
    """Why one purchased item was not notified."""

    model_config = ConfigDict(frozen=True)

    position: int
    product_name: str
    reason: ItemFailureReason
    detail: str | None = None

    @property
    def retryable(self) -> bool:
        return self.reason == ItemFailureReason.DELIVERY_FAILED


class FulfillmentResult(BaseModel):
    """Aggregate outcome of notifying every item of one event."""

    attempted: int = 0
    succeeded: int = 0
    skipped: int = Field(
        default=0,
        description="Items already delivered by an earlier, interrupted run",
    )
    failures: list[ItemFailure] = Field(default_factory=list)
    delivery_ids: list[str] = Field(default_factory=list)

    @property
    def has_retryable_failures(self) -> bool:
        return any(f.retryable for f in self.failures)

    @property
    def has_rejected_deliveries(self) -> bool:
        return any(f.reason == ItemFailureReason.DELIVERY_REJECTED for f in self.failures)

    @property
    def is_complete(self) -> bool:
        """True when a retry could not improve the outcome."""
        return all(f.reason == ItemFailureReason.MISSING_ASSET for f in self.failures)


class FulfillmentRecord(BaseModel):
    """Persisted idempotency record for one session (or event)."""

    fulfillment_key: str
    state: FulfillmentState = FulfillmentState.UNSEEN
    attempts: int = 0
    delivered_items: list[str] = Field(default_factory=list)
    lease_expires_at: int | None = Field(
        default=None,
        description="Epoch seconds after which an in-progress record may be taken over",
    )
    failure_reason: str | None = None
    updated_at: datetime | None = None


class FulfillmentOutcome(BaseModel):
    """What the engine decided for one webhook delivery.

    ``retry`` is True when the provider should redeliver the event.
    """

    received: bool = True
    fulfilled: bool | None = None
    reason: str | None = None
    retry: bool = False
    result: FulfillmentResult | None = None


class BeginResult(BaseModel):
    """Outcome of the idempotency check-and-set plus the record it produced."""

    outcome: BeginOutcome
    record: FulfillmentRecord | None = None

    @property
    def delivered_items(self) -> frozenset[str]:
        return frozenset(self.record.delivered_items) if self.record else frozenset()
