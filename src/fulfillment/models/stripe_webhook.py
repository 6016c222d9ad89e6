"""Stripe webhook payload models.

Raw Stripe JSON is parsed into these models right after signature
verification so the rest of the service never touches untyped dicts.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import PaymentStatus


class StripeEvent(BaseModel):
    """A Stripe event whose signature has been verified."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(
        ...,
        description="Stripe event ID (evt_xxx)",
        examples=["evt_1ABC123DEF456"],
    )
    type: str = Field(
        ...,
        description="Stripe event type",
        examples=["checkout.session.completed"],
    )
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def data_object(self) -> dict[str, Any]:
        """The event's ``data.object`` payload (the checkout session)."""
        obj = self.data.get("object")
        return obj if isinstance(obj, dict) else {}


class AuthenticityFailure(BaseModel):
    """Typed result returned when a webhook signature cannot be verified."""

    model_config = ConfigDict(frozen=True)

    reason: str


class CustomerDetails(BaseModel):
    """Subset of ``customer_details`` on a checkout session."""

    model_config = ConfigDict(extra="ignore")

    email: str | None = None
    name: str | None = None


class CheckoutSessionPayload(BaseModel):
    """Subset of a Stripe checkout session used for fulfillment."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., examples=["cs_test_a1b2c3"])
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    customer_email: str | None = None
    customer_details: CustomerDetails | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_default(cls, value: Any) -> Any:
        return value if value is not None else {}

    @property
    def resolved_email(self) -> str | None:
        """Detailed customer email, falling back to the legacy top-level field."""
        if self.customer_details and self.customer_details.email:
            return self.customer_details.email
        return self.customer_email or None

    @property
    def resolved_name(self) -> str | None:
        """Customer name from ``customer_details`` if present."""
        if self.customer_details:
            return self.customer_details.name or None
        return None
