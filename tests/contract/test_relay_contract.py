"""Contract tests for the POST /send mail relay.

Test categories:
- Bearer token authentication (401)
- Request validation (400)
- Delivery (200 / 502)
- Per-client rate limit (429)
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_200_OK,
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_502_BAD_GATEWAY,
)

from conftest import RecordingNotifier
from fulfillment.config import FulfillmentSettings
from fulfillment.models import DeliveryError
from fulfillment_api.dependencies import get_fulfillment_settings, get_notifier
from fulfillment_api.main import app

RELAY_KEY = "relay-secret-123"
AUTH = {"Authorization": f"Bearer {RELAY_KEY}"}
MESSAGE = {"to": "friend@example.com", "subject": "Hello", "text": "Hi there"}


@pytest.fixture
def relay_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def client(relay_notifier: RecordingNotifier) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_fulfillment_settings] = lambda: FulfillmentSettings(
        relay_api_key=RELAY_KEY
    )
    app.dependency_overrides[get_notifier] = lambda: relay_notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuthentication:
    def test_missing_token_returns_401(self, client: TestClient, relay_notifier: RecordingNotifier):
        response = client.post("/send", json=MESSAGE)

        assert response.status_code == HTTP_401_UNAUTHORIZED
        assert response.json()["message"] == "unauthorized"
        assert relay_notifier.calls == 0

    def test_wrong_token_returns_401(self, client: TestClient):
        response = client.post(
            "/send", json=MESSAGE, headers={"Authorization": "Bearer not-the-key"}
        )

        assert response.status_code == HTTP_401_UNAUTHORIZED

    def test_token_without_bearer_prefix_returns_401(self, client: TestClient):
        response = client.post("/send", json=MESSAGE, headers={"Authorization": RELAY_KEY})

        assert response.status_code == HTTP_401_UNAUTHORIZED

    def test_unconfigured_relay_rejects_everything(self, relay_notifier: RecordingNotifier):
        app.dependency_overrides[get_fulfillment_settings] = lambda: FulfillmentSettings()
        app.dependency_overrides[get_notifier] = lambda: relay_notifier
        try:
            response = TestClient(app).post(
                "/send", json=MESSAGE, headers={"Authorization": "Bearer "}
            )
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == HTTP_401_UNAUTHORIZED
        assert relay_notifier.calls == 0


class TestValidation:
    @pytest.mark.parametrize(
        "body",
        [
            {"subject": "Hello", "text": "Hi"},
            {"to": "friend@example.com", "text": "Hi"},
            {"to": "friend@example.com", "subject": "Hello"},
            {},
        ],
    )
    def test_missing_fields_return_400(self, client: TestClient, body: dict):
        response = client.post("/send", json=body, headers=AUTH)

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["message"] == "missing fields"


class TestDelivery:
    def test_text_message_is_sent(self, client: TestClient, relay_notifier: RecordingNotifier):
        response = client.post("/send", json=MESSAGE, headers=AUTH)

        assert response.status_code == HTTP_200_OK
        assert response.json() == {"ok": True, "message_id": "msg-1"}
        assert relay_notifier.sent == [
            {"to": "friend@example.com", "subject": "Hello", "html": None, "text": "Hi there"}
        ]

    def test_html_only_message_is_sent(
        self, client: TestClient, relay_notifier: RecordingNotifier
    ):
        body = {"to": "friend@example.com", "subject": "Hello", "html": "<b>Hi</b>"}

        response = client.post("/send", json=body, headers=AUTH)

        assert response.status_code == HTTP_200_OK
        assert relay_notifier.sent[0]["html"] == "<b>Hi</b>"

    def test_transport_failure_returns_502(self, relay_notifier: RecordingNotifier, client: TestClient):
        relay_notifier.failures["Hello"] = DeliveryError("SMTP unavailable", retryable=True)

        response = client.post("/send", json=MESSAGE, headers=AUTH)

        assert response.status_code == HTTP_502_BAD_GATEWAY
        body = response.json()
        assert body["message"] == "email_send_error"
        assert body["details"] == {"details": "SMTP unavailable"}


class TestRateLimit:
    @pytest.fixture
    def limited_client(
        self, monkeypatch: pytest.MonkeyPatch, client: TestClient
    ) -> TestClient:
        monkeypatch.setenv("RELAY_RATE_LIMIT", "2/minute")
        return client

    def test_requests_over_the_limit_return_429(
        self, limited_client: TestClient, relay_notifier: RecordingNotifier
    ):
        statuses = [
            limited_client.post("/send", json=MESSAGE, headers=AUTH).status_code
            for _ in range(3)
        ]

        assert statuses == [HTTP_200_OK, HTTP_200_OK, HTTP_429_TOO_MANY_REQUESTS]
        assert relay_notifier.calls == 2

    def test_rate_limited_body_carries_error_code(self, limited_client: TestClient):
        for _ in range(2):
            limited_client.post("/send", json=MESSAGE, headers=AUTH)

        response = limited_client.post("/send", json=MESSAGE, headers=AUTH)

        assert response.status_code == HTTP_429_TOO_MANY_REQUESTS
        body = response.json()
        assert body["error_code"] == "ERR_RELAY_004"
        assert body["message"] == "too many requests"
        assert body["details"]["limit"].startswith("2 per")

    def test_default_limit_allows_a_burst_of_thirty(
        self, client: TestClient, relay_notifier: RecordingNotifier
    ):
        statuses = {
            client.post("/send", json=MESSAGE, headers=AUTH).status_code for _ in range(30)
        }

        assert statuses == {HTTP_200_OK}
        assert client.post("/send", json=MESSAGE, headers=AUTH).status_code == (
            HTTP_429_TOO_MANY_REQUESTS
        )
