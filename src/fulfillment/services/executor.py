"""Per-item notification with partial-failure aggregation.

Each item is delivered independently: a failure on one item never stops
the others. The executor never raises for per-item failures. After all
items are processed it performs the single terminal write on the
idempotency record:

- no failures, or only missing-asset failures -> fulfilled
- any transient delivery failure              -> failed (redelivery resumes)
- otherwise (rejected deliveries)             -> failed (not retried)
"""

import asyncio
import logging

from pydantic import BaseModel

from fulfillment.models import (
    DeliveryError,
    FulfillmentEvent,
    FulfillmentResult,
    IdempotencyStoreError,
    ItemFailure,
    ItemFailureReason,
    PurchasedItem,
)
from fulfillment.utils.logging import log_fulfillment_operation

from .email_content import build_asset_link, build_download_email
from .idempotency_store import IdempotencyStore
from .notifier import Notifier

logger = logging.getLogger(__name__)


class _ItemOutcome(BaseModel):
    attempted: bool = False
    skipped: bool = False
    delivery_id: str | None = None
    failure: ItemFailure | None = None


class FulfillmentExecutor:
    """Send one download email per fulfillable item."""

    def __init__(
        self,
        notifier: Notifier,
        store: IdempotencyStore,
        link_template: str,
        concurrent: bool = False,
    ) -> None:
        self._notifier = notifier
        self._store = store
        self._link_template = link_template
        self._concurrent = concurrent

    async def execute(
        self,
        event: FulfillmentEvent,
        key: str,
        delivered: frozenset[str] = frozenset(),
    ) -> FulfillmentResult:
        """Notify every item of ``event`` and close the idempotency record.

        Args:
            event: Classified event with resolved items
            key: Idempotency key of the record begun for this run
            delivered: Item keys already delivered by an earlier run

        Returns:
            Aggregate result, items in resolver order.

        Raises:
            IdempotencyStoreError: If the terminal record write fails.
        """
        if self._concurrent:
            outcomes = list(
                await asyncio.gather(
                    *(
                        self._deliver_item(event, key, position, item, delivered)
                        for position, item in enumerate(event.items)
                    )
                )
            )
        else:
            outcomes = []
            for position, item in enumerate(event.items):
                outcomes.append(await self._deliver_item(event, key, position, item, delivered))

        result = FulfillmentResult()
        for outcome in outcomes:
            if outcome.skipped:
                result.skipped += 1
                continue
            if outcome.attempted:
                result.attempted += 1
            if outcome.failure is not None:
                result.failures.append(outcome.failure)
            elif outcome.delivery_id is not None:
                result.succeeded += 1
                result.delivery_ids.append(outcome.delivery_id)

        if result.is_complete:
            await self._store.mark_fulfilled(key)
        elif result.has_retryable_failures:
            await self._store.mark_failed(key, ItemFailureReason.DELIVERY_FAILED.value)
        else:
            await self._store.mark_failed(key, ItemFailureReason.DELIVERY_REJECTED.value)

        log_fulfillment_operation(
            logger,
            "fulfill_session",
            session_id=event.session_id,
            status="complete" if result.is_complete else "incomplete",
            attempted=result.attempted,
            succeeded=result.succeeded,
            skipped=result.skipped,
            failures=len(result.failures),
        )
        return result

    async def _deliver_item(
        self,
        event: FulfillmentEvent,
        key: str,
        position: int,
        item: PurchasedItem,
        delivered: frozenset[str],
    ) -> _ItemOutcome:
        item_key = item.delivery_key(position)
        if item_key in delivered:
            logger.info("Item %s of session %s already delivered, skipping", item_key, event.session_id)
            return _ItemOutcome(skipped=True)

        if not item.digital_asset_id:
            return _ItemOutcome(
                failure=ItemFailure(
                    position=position,
                    product_name=item.product_name,
                    reason=ItemFailureReason.MISSING_ASSET,
                )
            )

        # classifier guarantees an email before items are resolved
        recipient = event.customer_email or ""

        try:
            content = build_download_email(
                product_name=item.product_name,
                link=build_asset_link(self._link_template, item.digital_asset_id),
                customer_name=event.customer_name,
            )
            delivery_id = await self._notifier.send(
                recipient, content.subject, content.html_body, content.text_body
            )
        except DeliveryError as e:
            log_fulfillment_operation(
                logger,
                "send_download_link",
                session_id=event.session_id,
                product_name=item.product_name,
                recipient=recipient,
                error=str(e),
                retryable=e.retryable,
            )
            reason = (
                ItemFailureReason.DELIVERY_FAILED if e.retryable else ItemFailureReason.DELIVERY_REJECTED
            )
            return _ItemOutcome(
                attempted=True,
                failure=ItemFailure(
                    position=position,
                    product_name=item.product_name,
                    reason=reason,
                    detail=str(e),
                ),
            )
        except Exception as e:
            # Unknown notifier fault: counted as transient so redelivery resumes the item
            logger.exception(
                "Unexpected error delivering %s for session %s", item_key, event.session_id
            )
            return _ItemOutcome(
                attempted=True,
                failure=ItemFailure(
                    position=position,
                    product_name=item.product_name,
                    reason=ItemFailureReason.DELIVERY_FAILED,
                    detail=f"{type(e).__name__}: {e}",
                ),
            )

        log_fulfillment_operation(
            logger,
            "send_download_link",
            session_id=event.session_id,
            product_name=item.product_name,
            recipient=recipient,
            status="sent",
            delivery_id=delivery_id,
        )

        try:
            await self._store.record_delivery(key, item_key)
        except IdempotencyStoreError as e:
            # Mail is out; a resumed run may send this item again
            logger.error("Could not record delivery of %s for %s: %s", item_key, key, e)

        return _ItemOutcome(attempted=True, delivery_id=delivery_id)
