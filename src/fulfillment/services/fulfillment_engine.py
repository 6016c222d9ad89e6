"""Fulfillment engine: verified Stripe event -> download emails, once.

Pipeline for one webhook delivery:
1. EventClassifier decides whether the event is fulfillable
2. IdempotencyGate claims the session record (atomic check-and-set)
3. LineItemResolver fetches purchased items from Stripe
4. FulfillmentExecutor notifies each item and closes the record

Only infrastructure failures (Stripe or the idempotency store being
unavailable) raise RetryableError. Everything else is reported through
the returned FulfillmentOutcome. An unexpected exception after the record
is claimed marks it failed before propagating.
"""

import asyncio
import logging

from fulfillment.models import (
    BeginOutcome,
    BeginResult,
    FulfillmentEvent,
    FulfillmentOutcome,
    IdempotencyKeyField,
    IdempotencyStoreError,
    IgnoredEvent,
    IgnoreReason,
    RetryableError,
    StripeEvent,
)
from fulfillment.utils.logging import log_webhook_event

from .classifier import EventClassifier
from .executor import FulfillmentExecutor
from .idempotency_store import IdempotencyStore
from .line_items import LineItemResolver

logger = logging.getLogger(__name__)

LINE_ITEMS_UNAVAILABLE = "line_items_unavailable"
EXECUTOR_ERROR = "executor_error"


class IdempotencyGate:
    """Claim a fulfillment record before any side effect happens."""

    def __init__(self, store: IdempotencyStore, key_field: IdempotencyKeyField) -> None:
        self._store = store
        self._key_field = key_field

    def key_for(self, event: FulfillmentEvent) -> str:
        if self._key_field == IdempotencyKeyField.EVENT_ID:
            return event.event_id
        return event.session_id

    async def begin(self, event: FulfillmentEvent) -> tuple[str, BeginResult]:
        key = self.key_for(event)
        result = await self._store.try_begin_fulfillment(key)
        logger.info("Idempotency gate for %s: %s", key, result.outcome.value)
        return key, result


class FulfillmentEngine:
    """Turn verified checkout events into download-link emails."""

    def __init__(
        self,
        classifier: EventClassifier,
        gate: IdempotencyGate,
        resolver: LineItemResolver,
        executor: FulfillmentExecutor,
        store: IdempotencyStore,
    ) -> None:
        self._classifier = classifier
        self._gate = gate
        self._resolver = resolver
        self._executor = executor
        self._store = store

    async def process(self, stripe_event: StripeEvent) -> FulfillmentOutcome:
        """Process one verified webhook event.

        Args:
            stripe_event: Event returned by signature verification

        Returns:
            The outcome to report back to Stripe.

        Raises:
            RetryableError: If Stripe or the idempotency store is unavailable.
        """
        classified = self._classifier.classify(stripe_event)
        if isinstance(classified, IgnoredEvent):
            return self._ignored(classified)

        key, begin = await self._gate.begin(classified)

        if begin.outcome == BeginOutcome.ALREADY_FULFILLED:
            log_webhook_event(
                logger, stripe_event.type, stripe_event.id,
                session_id=classified.session_id, result="duplicate",
            )
            return FulfillmentOutcome(fulfilled=True)

        if begin.outcome == BeginOutcome.ALREADY_IN_PROGRESS:
            # Redelivery either sees the owner's result or takes over an expired lease
            log_webhook_event(
                logger, stripe_event.type, stripe_event.id,
                session_id=classified.session_id, result="retry", reason="in_progress",
            )
            return FulfillmentOutcome(fulfilled=False, reason="in_progress", retry=True)

        try:
            items = await self._resolver.resolve(classified)
        except RetryableError as e:
            log_webhook_event(
                logger, stripe_event.type, stripe_event.id,
                session_id=classified.session_id, result="retry", error=str(e),
            )
            await self._store.mark_failed(key, LINE_ITEMS_UNAVAILABLE)
            raise

        # Started notifications run to completion even if the request is cancelled
        try:
            result = await asyncio.shield(
                self._executor.execute(classified.with_items(items), key, begin.delivered_items)
            )
        except Exception as e:
            logger.exception("Fulfillment of %s aborted", key)
            log_webhook_event(
                logger, stripe_event.type, stripe_event.id,
                session_id=classified.session_id, result="error", error=str(e),
            )
            await self._release(key, EXECUTOR_ERROR)
            raise

        if result.has_retryable_failures:
            log_webhook_event(
                logger, stripe_event.type, stripe_event.id,
                session_id=classified.session_id, result="retry", reason="delivery_failed",
            )
            return FulfillmentOutcome(
                fulfilled=False, reason="delivery_failed", retry=True, result=result
            )

        if result.has_rejected_deliveries:
            log_webhook_event(
                logger, stripe_event.type, stripe_event.id,
                session_id=classified.session_id, result="error", reason="delivery_rejected",
            )
            return FulfillmentOutcome(fulfilled=False, reason="delivery_rejected", result=result)

        reason = "missing_asset" if result.failures else None
        log_webhook_event(
            logger, stripe_event.type, stripe_event.id,
            session_id=classified.session_id, result="fulfilled", reason=reason,
            succeeded=result.succeeded,
        )
        return FulfillmentOutcome(fulfilled=True, reason=reason, result=result)

    async def _release(self, key: str, reason: str) -> None:
        """Mark the record failed so a redelivery can resume it at once."""
        try:
            await self._store.mark_failed(key, reason)
        except IdempotencyStoreError as e:
            # the lease still expires; the original error is what the caller sees
            logger.error("Could not release fulfillment record %s: %s", key, e)

    def _ignored(self, ignored: IgnoredEvent) -> FulfillmentOutcome:
        log_webhook_event(
            logger, ignored.event_type, ignored.event_id,
            result="skipped", reason=ignored.reason.value,
        )
        if ignored.reason == IgnoreReason.UNHANDLED_EVENT_TYPE:
            return FulfillmentOutcome(reason=ignored.reason.value)
        return FulfillmentOutcome(fulfilled=False, reason=ignored.reason.value)
