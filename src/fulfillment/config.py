"""Environment-driven configuration for the fulfillment service.

Values only: every setting is read from environment variables. Stripe
secrets that are not present in the environment are resolved from SSM
Parameter Store by StripeService.
"""

import os
from functools import lru_cache

from limits import parse_many
from pydantic import BaseModel, ConfigDict, Field, field_validator

from fulfillment.models import AssetIdSource, IdempotencyKeyField

DEFAULT_EVENT_TYPES = (
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
)

DEFAULT_LINK_TEMPLATE = "https://drive.google.com/file/d/{asset_id}/view"
DEFAULT_RELAY_RATE_LIMIT = "30/minute"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str) -> str | None:
    raw = os.getenv(name, "").strip()
    return raw or None


class AssetIdRule(BaseModel):
    """Where the digital asset id of a purchased item is read from.

    ``product_metadata`` reads ``product.metadata[metadata_key]`` of each
    line item. ``session_metadata`` reads ``session.metadata[metadata_key]``
    and applies it to every line item of the session.
    """

    model_config = ConfigDict(frozen=True)

    source: AssetIdSource = AssetIdSource.PRODUCT_METADATA
    metadata_key: str = "pdf_id"


class FulfillmentSettings(BaseModel):
    """Runtime configuration."""

    model_config = ConfigDict(frozen=True)

    environment: str = "dev"

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None

    # Classification
    fulfillable_event_types: frozenset[str] = Field(
        default=frozenset(DEFAULT_EVENT_TYPES)
    )
    required_metadata_key: str | None = Field(
        default=None,
        description="Session metadata key that marks sessions created by our purchase flow",
    )

    # Items
    asset_id_rule: AssetIdRule = Field(default_factory=AssetIdRule)
    asset_link_template: str = DEFAULT_LINK_TEMPLATE

    # Idempotency
    idempotency_key_field: IdempotencyKeyField = IdempotencyKeyField.SESSION_ID
    idempotency_backend: str = "dynamodb"
    lease_seconds: int = Field(default=300, gt=0)

    # Delivery
    concurrent_delivery: bool = False
    notifier_backend: str = "ses"
    mail_from: str = "noreply@example.com"
    mail_from_name: str = "Your Store Name"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_ssl: bool = True
    smtp_timeout: int = 30

    # Mail relay
    relay_api_key: str | None = None
    relay_rate_limit: str = Field(
        default=DEFAULT_RELAY_RATE_LIMIT,
        description="Requests per client allowed on /send, e.g. \"30/minute\"",
    )

    @field_validator("asset_link_template")
    @classmethod
    def _template_has_placeholder(cls, value: str) -> str:
        if "{asset_id}" not in value:
            raise ValueError("asset_link_template must contain '{asset_id}'")
        return value

    @field_validator("relay_rate_limit")
    @classmethod
    def _valid_rate_limit(cls, value: str) -> str:
        # raises ValueError on strings like "thirty per minute"
        parse_many(value)
        return value

    @field_validator("idempotency_backend", "notifier_backend")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.strip().lower()

    @classmethod
    def from_env(cls) -> "FulfillmentSettings":
        """Build settings from environment variables."""
        event_types = _env_str("FULFILLABLE_EVENT_TYPES")
        allow_set = (
            frozenset(t.strip() for t in event_types.split(",") if t.strip())
            if event_types
            else frozenset(DEFAULT_EVENT_TYPES)
        )

        return cls(
            environment=os.getenv("ENVIRONMENT", "dev"),
            stripe_secret_key=_env_str("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=_env_str("STRIPE_WEBHOOK_SECRET"),
            fulfillable_event_types=allow_set,
            required_metadata_key=_env_str("REQUIRED_METADATA_KEY"),
            asset_id_rule=AssetIdRule(
                source=AssetIdSource(
                    os.getenv("ASSET_ID_SOURCE", AssetIdSource.PRODUCT_METADATA.value)
                ),
                metadata_key=os.getenv("ASSET_ID_METADATA_KEY", "pdf_id"),
            ),
            asset_link_template=os.getenv("ASSET_LINK_TEMPLATE", DEFAULT_LINK_TEMPLATE),
            idempotency_key_field=IdempotencyKeyField(
                os.getenv("IDEMPOTENCY_KEY_FIELD", IdempotencyKeyField.SESSION_ID.value)
            ),
            idempotency_backend=os.getenv("IDEMPOTENCY_BACKEND", "dynamodb"),
            lease_seconds=int(os.getenv("FULFILLMENT_LEASE_SECONDS", "300")),
            concurrent_delivery=_env_bool("CONCURRENT_DELIVERY"),
            notifier_backend=os.getenv("NOTIFIER_BACKEND", "ses"),
            mail_from=os.getenv("MAIL_FROM") or os.getenv("GMAIL_USER") or "noreply@example.com",
            mail_from_name=os.getenv("MAIL_FROM_NAME", "Your Store Name"),
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(os.getenv("SMTP_PORT", "465")),
            smtp_username=_env_str("SMTP_USERNAME") or _env_str("GMAIL_USER"),
            smtp_password=_env_str("SMTP_PASSWORD") or _env_str("GMAIL_APP_PASSWORD"),
            smtp_use_ssl=_env_bool("SMTP_USE_SSL", default=True),
            smtp_timeout=int(os.getenv("SMTP_TIMEOUT_SEC", "30")),
            relay_api_key=_env_str("RELAY_API_KEY"),
            relay_rate_limit=os.getenv("RELAY_RATE_LIMIT", DEFAULT_RELAY_RATE_LIMIT),
        )


@lru_cache(maxsize=1)
def get_settings() -> FulfillmentSettings:
    """Get the process-wide settings (read once from the environment)."""
    return FulfillmentSettings.from_env()
