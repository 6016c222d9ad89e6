"""Pytest configuration and fixtures for checkout fulfillment tests.

This module provides reusable fixtures for testing:
- AWS mocking with moto (DynamoDB idempotency table, SES, SSM)
- Recording/failing notifiers and a fake Stripe line-item source
- Stripe event builders and real HMAC webhook signatures
"""

import asyncio
import hashlib
import hmac
import json
import os
import time
from typing import Any, Generator

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-fulfillment")
os.environ["STRIPE_SECRET_KEY"] = "sk_test_abc123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret_for_testing"
os.environ["NOTIFIER_BACKEND"] = "console"
os.environ["IDEMPOTENCY_BACKEND"] = "memory"

# Only set fake credentials for moto if no real credentials are present
if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from fulfillment.config import FulfillmentSettings  # noqa: E402
from fulfillment.services.classifier import EventClassifier  # noqa: E402
from fulfillment.services.executor import FulfillmentExecutor  # noqa: E402
from fulfillment.services.fulfillment_engine import FulfillmentEngine, IdempotencyGate  # noqa: E402
from fulfillment.services.idempotency_store import InMemoryIdempotencyStore  # noqa: E402
from fulfillment.services.line_items import LineItemResolver  # noqa: E402

TEST_WEBHOOK_SECRET = "whsec_test_secret_for_testing"
TEST_SESSION_ID = "cs_test_a1b2c3"
TEST_EMAIL = "buyer@example.com"
RECORDS_TABLE = "test-fulfillment-fulfillment-records"


# === Service Singletons ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached services before and after each test.

    Tests that change environment variables or enter mock_aws get fresh
    settings, stores and boto3 clients.
    """
    from fulfillment_api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


# === AWS Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def mock_aws_services(aws_credentials: None) -> Generator[None, None, None]:
    """Enter a moto context for DynamoDB, SES and SSM."""
    with mock_aws():
        yield


@pytest.fixture
def records_table(mock_aws_services: None) -> str:
    """Create the fulfillment-records DynamoDB table."""
    client = boto3.client("dynamodb", region_name="eu-west-1")
    client.create_table(
        TableName=RECORDS_TABLE,
        KeySchema=[{"AttributeName": "fulfillment_key", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "fulfillment_key", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )
    return RECORDS_TABLE


# === Collaborator Doubles ===


class RecordingNotifier:
    """Notifier that records every message and can fail chosen subjects.

    ``failures`` maps a substring of the subject to the exception to raise.
    """

    def __init__(self, failures: dict[str, Exception] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.calls = 0
        self.failures = failures or {}

    async def send(
        self,
        recipient: str,
        subject: str,
        html_body: str | None,
        text_body: str | None,
    ) -> str:
        self.calls += 1
        await asyncio.sleep(0)
        for needle, error in self.failures.items():
            if needle in subject:
                raise error
        self.sent.append(
            {"to": recipient, "subject": subject, "html": html_body, "text": text_body}
        )
        return f"msg-{len(self.sent)}"


class FakeStripeLineItems:
    """Stand-in for StripeService.list_line_items."""

    def __init__(self, line_items: list[dict[str, Any]], error: Exception | None = None) -> None:
        self.line_items = line_items
        self.error = error
        self.calls: list[str] = []

    def list_line_items(self, session_id: str) -> list[dict[str, Any]]:
        self.calls.append(session_id)
        if self.error is not None:
            raise self.error
        return self.line_items


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


def build_engine(
    notifier: RecordingNotifier,
    line_items: list[dict[str, Any]],
    *,
    store: InMemoryIdempotencyStore | None = None,
    stripe_error: Exception | None = None,
    **overrides: Any,
) -> tuple[FulfillmentEngine, InMemoryIdempotencyStore, FakeStripeLineItems]:
    """Wire a FulfillmentEngine the way the app does, with test doubles.

    ``overrides`` are FulfillmentSettings fields.
    """
    settings = FulfillmentSettings(**overrides)
    store = store or InMemoryIdempotencyStore(lease_seconds=settings.lease_seconds)
    stripe_fake = FakeStripeLineItems(line_items, error=stripe_error)
    engine = FulfillmentEngine(
        classifier=EventClassifier.from_settings(settings),
        gate=IdempotencyGate(store, settings.idempotency_key_field),
        resolver=LineItemResolver(stripe_fake, settings.asset_id_rule),  # type: ignore[arg-type]
        executor=FulfillmentExecutor(
            notifier=notifier,
            store=store,
            link_template=settings.asset_link_template,
            concurrent=settings.concurrent_delivery,
        ),
        store=store,
    )
    return engine, store, stripe_fake


# === Stripe Payload Builders ===


def make_line_item(
    name: str,
    pdf_id: str | None = None,
    line_item_id: str | None = None,
) -> dict[str, Any]:
    """A Stripe line item with ``price.product`` expanded."""
    metadata = {"pdf_id": pdf_id} if pdf_id else {}
    return {
        "id": line_item_id or f"li_{name.lower().replace(' ', '_')}",
        "object": "item",
        "description": name,
        "quantity": 1,
        "price": {
            "id": f"price_{name.lower().replace(' ', '_')}",
            "product": {
                "id": f"prod_{name.lower().replace(' ', '_')}",
                "object": "product",
                "name": name,
                "metadata": metadata,
            },
        },
    }


def make_checkout_event(
    event_id: str = "evt_1ABC123DEF456",
    event_type: str = "checkout.session.completed",
    session_id: str = TEST_SESSION_ID,
    payment_status: str = "paid",
    email: str | None = TEST_EMAIL,
    legacy_email: str | None = None,
    name: str | None = "Ada Lovelace",
    metadata: dict[str, str] | None = None,
) -> dict[str, Any]:
    """A checkout.session.* webhook event payload."""
    customer_details = {"email": email, "name": name} if (email or name) else None
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": payment_status,
                "customer_details": customer_details,
                "customer_email": legacy_email,
                "metadata": metadata or {},
            },
        },
    }


def sign_payload(payload: bytes, secret: str = TEST_WEBHOOK_SECRET) -> str:
    """Create a valid Stripe-Signature header for a payload.

    Stripe signatures use HMAC-SHA256 with format: t={timestamp},v1={signature}
    """
    timestamp = str(int(time.time()))
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}"
    signature = hmac.new(
        secret.encode("utf-8"),
        signed_payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def encode_event(event: dict[str, Any]) -> bytes:
    return json.dumps(event).encode("utf-8")
