"""Resolve a checkout session's line items into PurchasedItems."""

import asyncio
import logging
from typing import Any

from fulfillment.config import AssetIdRule
from fulfillment.models import AssetIdSource, FulfillmentEvent, PurchasedItem, RetryableError

from .stripe_service import StripeService, StripeServiceError

logger = logging.getLogger(__name__)


def _product_of(line_item: dict[str, Any]) -> dict[str, Any]:
    price = line_item.get("price") or {}
    product = price.get("product") if isinstance(price, dict) else None
    # Unexpanded products are bare IDs
    return product if isinstance(product, dict) else {}


def to_purchased_item(
    line_item: dict[str, Any],
    rule: AssetIdRule,
    session_metadata: dict[str, str],
) -> PurchasedItem:
    """Map one Stripe line item to a PurchasedItem using the asset id rule."""
    product = _product_of(line_item)
    product_name = product.get("name") or line_item.get("description") or "Unknown product"

    if rule.source == AssetIdSource.SESSION_METADATA:
        asset_id = session_metadata.get(rule.metadata_key)
    else:
        asset_id = (product.get("metadata") or {}).get(rule.metadata_key)

    return PurchasedItem(
        product_name=product_name,
        digital_asset_id=asset_id or None,
        line_item_id=line_item.get("id"),
    )


class LineItemResolver:
    """Fetch line items (products expanded in the same request) for a session."""

    def __init__(self, stripe_service: StripeService, rule: AssetIdRule) -> None:
        self._stripe = stripe_service
        self._rule = rule

    async def resolve(self, event: FulfillmentEvent) -> list[PurchasedItem]:
        """Resolve the session's purchased items in Stripe's order.

        Items without an asset id are kept so they can be reported.

        Raises:
            RetryableError: If Stripe cannot be reached or rejects the call.
        """
        try:
            line_items = await asyncio.to_thread(self._stripe.list_line_items, event.session_id)
        except StripeServiceError as e:
            raise RetryableError(f"Line items unavailable for {event.session_id}: {e}") from e

        items = [to_purchased_item(li, self._rule, event.metadata) for li in line_items]
        for item in items:
            if not item.is_fulfillable:
                logger.warning(
                    "No %s found in %s for product: %s",
                    self._rule.metadata_key,
                    self._rule.source.value,
                    item.product_name,
                )
        return items
