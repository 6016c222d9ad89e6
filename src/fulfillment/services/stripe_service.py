"""Stripe integration for webhook verification and line-item retrieval.

Uses the v8+ StripeClient pattern. Keys come from the environment or,
when absent there, from SSM Parameter Store.
"""

import logging
from typing import Any

import stripe
from stripe import StripeClient

from fulfillment.config import FulfillmentSettings
from fulfillment.models import AuthenticityFailure, StripeEvent

from .ssm_service import SSMService, SSMServiceError, get_ssm_service, parameter_path

logger = logging.getLogger(__name__)

# Expanding the product on each line item avoids one product fetch per item
LINE_ITEM_EXPAND = ["data.price.product"]
LINE_ITEM_PAGE_SIZE = 100


class StripeServiceError(Exception):
    """Raised when a Stripe operation fails."""

    def __init__(self, message: str, stripe_error_code: str | None = None) -> None:
        """Initialize with message and optional Stripe error code.

        Args:
            message: Human-readable error message.
            stripe_error_code: Stripe-specific error code if available.
        """
        super().__init__(message)
        self.stripe_error_code = stripe_error_code


def _as_dict(obj: Any) -> dict[str, Any]:
    """Convert a StripeObject (or plain mapping) to a plain dict."""
    if isinstance(obj, dict):
        return dict(obj)
    return obj.to_dict()


class StripeService:
    """Service for the Stripe operations fulfillment depends on.

    Handles:
    - Webhook signature validation
    - Listing checkout session line items with products expanded

    Usage:
        stripe_svc = StripeService(settings)
        result = stripe_svc.verify_webhook_signature(payload, signature)
        if isinstance(result, AuthenticityFailure):
            ...
    """

    def __init__(
        self,
        settings: FulfillmentSettings,
        ssm: SSMService | None = None,
        client: StripeClient | None = None,
    ) -> None:
        self._settings = settings
        self._ssm = ssm
        self._client = client
        self._webhook_secret = settings.stripe_webhook_secret

    def _get_ssm(self) -> SSMService:
        if self._ssm is None:
            self._ssm = get_ssm_service()
        return self._ssm

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            StripeServiceError: If credentials cannot be retrieved.
        """
        if self._client is None:
            secret_key = self._settings.stripe_secret_key
            if secret_key is None:
                try:
                    secret_key = self._get_ssm().get_parameter(
                        parameter_path(self._settings.environment, "stripe/secret_key")
                    )
                except SSMServiceError as e:
                    raise StripeServiceError(f"Failed to initialize Stripe client: {e}") from e
            self._client = StripeClient(secret_key)
            logger.info("Stripe client initialized for environment: %s", self._settings.environment)
        return self._client

    def _get_webhook_secret(self) -> str:
        """Get the webhook signing secret.

        Raises:
            StripeServiceError: If secret cannot be retrieved.
        """
        if self._webhook_secret is None:
            try:
                self._webhook_secret = self._get_ssm().get_parameter(
                    parameter_path(self._settings.environment, "stripe/webhook_secret")
                )
            except SSMServiceError as e:
                raise StripeServiceError(f"Failed to get webhook secret: {e}") from e
        return self._webhook_secret

    def verify_webhook_signature(
        self, payload: bytes, signature: str | None
    ) -> StripeEvent | AuthenticityFailure:
        """Verify a webhook signature and parse the event.

        Signature problems are returned, not raised, so the caller branches
        on the result explicitly.

        Args:
            payload: Raw request body bytes.
            signature: Stripe-Signature header value.

        Returns:
            The verified event, or an AuthenticityFailure.

        Raises:
            StripeServiceError: If the signing secret cannot be retrieved.
        """
        if not signature:
            return AuthenticityFailure(reason="Missing Stripe-Signature header")

        webhook_secret = self._get_webhook_secret()

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            return AuthenticityFailure(reason="Invalid webhook signature")
        except ValueError as e:
            logger.warning("Webhook payload is not valid JSON: %s", str(e))
            return AuthenticityFailure(reason="Invalid webhook payload")

        parsed = StripeEvent.model_validate(_as_dict(event))
        logger.info("Webhook signature verified for event: %s", parsed.id)
        return parsed

    def list_line_items(self, session_id: str) -> list[dict[str, Any]]:
        """List all line items of a checkout session with products expanded.

        Args:
            session_id: Checkout session ID (cs_xxx).

        Returns:
            Line items as plain dicts, in Stripe's order.

        Raises:
            StripeServiceError: If the request fails.
        """
        client = self._get_client()

        try:
            page = client.checkout.sessions.line_items.list(
                session_id,
                params={"expand": LINE_ITEM_EXPAND, "limit": LINE_ITEM_PAGE_SIZE},
            )
            items = [_as_dict(item) for item in page.auto_paging_iter()]
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error(
                "Stripe line item listing failed for %s: %s (code: %s)",
                session_id,
                str(e),
                error_code,
            )
            raise StripeServiceError(
                f"Failed to list line items: {e}",
                stripe_error_code=error_code,
            ) from e

        logger.info("Retrieved %d line items for session %s", len(items), session_id)
        return items
