"""Contract tests for POST /webhooks/stripe.

The endpoint runs in the real FastAPI app with a real StripeService doing
signature verification. The engine is wired with a recording notifier and
fake line items through ``app.dependency_overrides``.

Test categories:
- Signature validation (400)
- Fulfilled, ignored and duplicate events (200)
- Transient failures (500) and their redelivery
"""

import asyncio
from typing import Any, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_200_OK,
    HTTP_400_BAD_REQUEST,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from conftest import (
    RecordingNotifier,
    build_engine,
    encode_event,
    make_checkout_event,
    make_line_item,
    sign_payload,
)
from fulfillment.config import FulfillmentSettings
from fulfillment.models import DeliveryError, FulfillmentState
from fulfillment.services.idempotency_store import InMemoryIdempotencyStore
from fulfillment.services.ssm_service import SSMServiceError
from fulfillment.services.stripe_service import StripeService, StripeServiceError
from fulfillment_api.dependencies import get_fulfillment_engine, get_stripe_service
from fulfillment_api.main import app

WEBHOOK_URL = "/webhooks/stripe"

TWO_GUIDES = [
    make_line_item("Guide A", pdf_id="pdf-a"),
    make_line_item("Guide B", pdf_id="pdf-b"),
]


# === Fixtures ===


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    yield TestClient(app)
    app.dependency_overrides.clear()


def install_engine(notifier: RecordingNotifier, line_items: list[dict[str, Any]], **kwargs: Any):
    engine, store, stripe_fake = build_engine(notifier, line_items, **kwargs)
    app.dependency_overrides[get_fulfillment_engine] = lambda: engine
    return engine, store, stripe_fake


def post_event(client: TestClient, event: dict[str, Any], **headers: str):
    payload = encode_event(event)
    return client.post(
        WEBHOOK_URL,
        content=payload,
        headers={
            "Content-Type": "application/json",
            "Stripe-Signature": sign_payload(payload),
            **headers,
        },
    )


# === Signature validation ===


class TestSignatureValidation:
    def test_missing_signature_returns_400(self, client: TestClient, notifier: RecordingNotifier):
        install_engine(notifier, TWO_GUIDES)

        response = client.post(
            WEBHOOK_URL,
            content=encode_event(make_checkout_event()),
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "ERR_WEBHOOK_001"
        assert notifier.calls == 0

    def test_invalid_signature_returns_400(self, client: TestClient, notifier: RecordingNotifier):
        install_engine(notifier, TWO_GUIDES)
        payload = encode_event(make_checkout_event())

        response = client.post(
            WEBHOOK_URL,
            content=payload,
            headers={"Stripe-Signature": sign_payload(payload, secret="whsec_wrong")},
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["message"] == "Invalid webhook signature"
        assert notifier.calls == 0

    def test_tampered_body_returns_400(self, client: TestClient, notifier: RecordingNotifier):
        install_engine(notifier, TWO_GUIDES)
        payload = encode_event(make_checkout_event())
        signature = sign_payload(payload)

        response = client.post(
            WEBHOOK_URL,
            content=payload.replace(b'"paid"', b'"unpaid"'),
            headers={"Stripe-Signature": signature},
        )

        assert response.status_code == HTTP_400_BAD_REQUEST

    def test_unavailable_secret_returns_500(
        self, client: TestClient, notifier: RecordingNotifier
    ):
        install_engine(notifier, TWO_GUIDES)
        ssm = _failing_ssm()
        app.dependency_overrides[get_stripe_service] = lambda: StripeService(
            FulfillmentSettings(), ssm=ssm
        )

        response = post_event(client, make_checkout_event())

        assert response.status_code == HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error_code"] == "ERR_WEBHOOK_002"


def _failing_ssm() -> MagicMock:
    ssm = MagicMock()
    ssm.get_parameter.side_effect = SSMServiceError("Access denied")
    return ssm


# === Acknowledged events ===


class TestAcknowledgedEvents:
    def test_paid_session_is_fulfilled(self, client: TestClient, notifier: RecordingNotifier):
        install_engine(notifier, TWO_GUIDES)

        response = post_event(client, make_checkout_event())

        assert response.status_code == HTTP_200_OK
        assert response.json() == {"received": True, "fulfilled": True}
        assert len(notifier.sent) == 2

    def test_unhandled_event_type_omits_fulfilled(
        self, client: TestClient, notifier: RecordingNotifier
    ):
        install_engine(notifier, TWO_GUIDES)

        response = post_event(client, make_checkout_event(event_type="charge.refunded"))

        assert response.status_code == HTTP_200_OK
        assert response.json() == {"received": True, "reason": "unhandled_event_type"}
        assert notifier.calls == 0

    def test_unpaid_session_is_not_fulfilled(
        self, client: TestClient, notifier: RecordingNotifier
    ):
        install_engine(notifier, TWO_GUIDES)

        response = post_event(client, make_checkout_event(payment_status="unpaid"))

        assert response.status_code == HTTP_200_OK
        assert response.json() == {
            "received": True,
            "fulfilled": False,
            "reason": "payment_not_paid",
        }

    def test_missing_email_is_acknowledged(self, client: TestClient, notifier: RecordingNotifier):
        install_engine(notifier, TWO_GUIDES)

        response = post_event(client, make_checkout_event(email=None))

        assert response.status_code == HTTP_200_OK
        assert response.json()["reason"] == "no_email"
        assert notifier.calls == 0

    def test_duplicate_delivery_sends_nothing_more(
        self, client: TestClient, notifier: RecordingNotifier
    ):
        install_engine(notifier, TWO_GUIDES)

        first = post_event(client, make_checkout_event())
        second = post_event(client, make_checkout_event(event_id="evt_redelivered"))

        assert first.json() == {"received": True, "fulfilled": True}
        assert second.status_code == HTTP_200_OK
        assert second.json() == {"received": True, "fulfilled": True}
        assert len(notifier.sent) == 2

    def test_missing_asset_is_reported(self, client: TestClient, notifier: RecordingNotifier):
        install_engine(notifier, [make_line_item("Guide A", pdf_id="pdf-a"), make_line_item("Sticker")])

        response = post_event(client, make_checkout_event())

        assert response.json() == {"received": True, "fulfilled": True, "reason": "missing_asset"}

    def test_rejected_delivery_is_not_retried(self, client: TestClient):
        notifier = RecordingNotifier(
            failures={"Guide A": DeliveryError("mailbox unavailable", retryable=False)}
        )
        install_engine(notifier, TWO_GUIDES)

        response = post_event(client, make_checkout_event())

        assert response.status_code == HTTP_200_OK
        assert response.json() == {
            "received": True,
            "fulfilled": False,
            "reason": "delivery_rejected",
        }


# === Transient failures ===


class TestTransientFailures:
    def test_transient_delivery_failure_returns_500_then_recovers(self, client: TestClient):
        notifier = RecordingNotifier(
            failures={"Guide B": DeliveryError("connection reset", retryable=True)}
        )
        install_engine(notifier, TWO_GUIDES)

        first = post_event(client, make_checkout_event())
        notifier.failures.clear()
        second = post_event(client, make_checkout_event())

        assert first.status_code == HTTP_500_INTERNAL_SERVER_ERROR
        assert first.json()["details"] == {"reason": "delivery_failed"}
        assert second.status_code == HTTP_200_OK
        assert second.json() == {"received": True, "fulfilled": True}
        assert [m["subject"] for m in notifier.sent] == [
            "Your Purchase: Guide A",
            "Your Purchase: Guide B",
        ]

    def test_stripe_outage_returns_500(self, client: TestClient, notifier: RecordingNotifier):
        install_engine(notifier, TWO_GUIDES, stripe_error=StripeServiceError("timeout"))

        response = post_event(client, make_checkout_event())

        assert response.status_code == HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error_code"] == "ERR_WEBHOOK_002"
        assert notifier.calls == 0

    def test_in_progress_duplicate_returns_500(
        self, client: TestClient, notifier: RecordingNotifier
    ):
        store = InMemoryIdempotencyStore()
        install_engine(notifier, TWO_GUIDES, store=store)
        asyncio.run(store.try_begin_fulfillment("cs_test_a1b2c3"))

        response = post_event(client, make_checkout_event())

        assert response.status_code == HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error_code"] == "ERR_WEBHOOK_002"
        assert response.json()["details"] == {"reason": "in_progress"}
        assert notifier.calls == 0

    def test_unexpected_notifier_error_returns_json_500(self, client: TestClient):
        notifier = RecordingNotifier(failures={"Guide A": RuntimeError("socket closed")})
        _, store, _ = install_engine(notifier, TWO_GUIDES)

        response = post_event(client, make_checkout_event())

        assert response.status_code == HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["details"] == {"reason": "delivery_failed"}
        assert [m["subject"] for m in notifier.sent] == ["Your Purchase: Guide B"]
        record = asyncio.run(store.get_record("cs_test_a1b2c3"))
        assert record.state == FulfillmentState.FAILED

    def test_unhandled_error_returns_json_500(self):
        engine = MagicMock()
        engine.process = AsyncMock(side_effect=RuntimeError("boom"))
        app.dependency_overrides[get_fulfillment_engine] = lambda: engine
        try:
            client = TestClient(app, raise_server_exceptions=False)
            response = post_event(client, make_checkout_event())
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == HTTP_500_INTERNAL_SERVER_ERROR
        assert response.headers["content-type"] == "application/json"
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "ERR_WEBHOOK_002"
        assert "boom" not in response.text


# === Cross-cutting ===


def test_correlation_id_is_echoed(client: TestClient, notifier: RecordingNotifier):
    install_engine(notifier, TWO_GUIDES)

    response = post_event(client, make_checkout_event(), **{"X-Correlation-ID": "corr-123"})

    assert response.headers["X-Correlation-ID"] == "corr-123"


def test_ping(client: TestClient):
    response = client.get("/ping")

    assert response.status_code == HTTP_200_OK
    assert response.json()["status"] == "ok"
