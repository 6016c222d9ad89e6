"""Idempotency store for fulfillment records.

A record moves ``unseen -> in_progress -> fulfilled | failed``. The only
way into ``in_progress`` is ``try_begin_fulfillment``, a single atomic
check-and-set, so two concurrent deliveries of the same webhook cannot
both start sending mail. A ``failed`` record, or an ``in_progress`` record
whose lease has expired, may be begun again by a redelivery.

Backends:
- DynamoDBIdempotencyStore: conditional UpdateItem against DynamoDB
- InMemoryIdempotencyStore: asyncio.Lock guarded dict, for local runs and tests
"""

import asyncio
import datetime as dt
import logging
import time
from typing import Any, Callable, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from fulfillment.models import (
    BeginOutcome,
    BeginResult,
    FulfillmentRecord,
    FulfillmentState,
    IdempotencyStoreError,
)

from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)


class IdempotencyStore(Protocol):
    """Persistence contract used by the fulfillment engine."""

    async def try_begin_fulfillment(self, key: str) -> BeginResult: ...

    async def record_delivery(self, key: str, item_key: str) -> None: ...

    async def mark_fulfilled(self, key: str) -> None: ...

    async def mark_failed(self, key: str, reason: str) -> None: ...

    async def get_record(self, key: str) -> FulfillmentRecord | None: ...


class InMemoryIdempotencyStore:
    """Process-local store. Records do not survive a restart."""

    def __init__(
        self,
        lease_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._lease_seconds = lease_seconds
        self._clock = clock
        self._records: dict[str, FulfillmentRecord] = {}
        self._lock = asyncio.Lock()

    async def try_begin_fulfillment(self, key: str) -> BeginResult:
        async with self._lock:
            now = self._clock()
            record = self._records.get(key)

            if record is not None:
                if record.state == FulfillmentState.FULFILLED:
                    return BeginResult(outcome=BeginOutcome.ALREADY_FULFILLED, record=record)
                if (
                    record.state == FulfillmentState.IN_PROGRESS
                    and record.lease_expires_at is not None
                    and record.lease_expires_at > now
                ):
                    return BeginResult(outcome=BeginOutcome.ALREADY_IN_PROGRESS, record=record)

            record = FulfillmentRecord(
                fulfillment_key=key,
                state=FulfillmentState.IN_PROGRESS,
                attempts=(record.attempts if record else 0) + 1,
                delivered_items=list(record.delivered_items) if record else [],
                lease_expires_at=int(now) + self._lease_seconds,
                updated_at=dt.datetime.now(dt.UTC),
            )
            self._records[key] = record
            return BeginResult(outcome=BeginOutcome.BEGUN, record=record)

    async def record_delivery(self, key: str, item_key: str) -> None:
        async with self._lock:
            record = self._records[key]
            if item_key not in record.delivered_items:
                record.delivered_items.append(item_key)

    async def mark_fulfilled(self, key: str) -> None:
        await self._finish(key, FulfillmentState.FULFILLED, None)

    async def mark_failed(self, key: str, reason: str) -> None:
        await self._finish(key, FulfillmentState.FAILED, reason)

    async def get_record(self, key: str) -> FulfillmentRecord | None:
        return self._records.get(key)

    async def _finish(self, key: str, state: FulfillmentState, reason: str | None) -> None:
        async with self._lock:
            record = self._records[key]
            self._records[key] = record.model_copy(
                update={
                    "state": state,
                    "lease_expires_at": None,
                    "failure_reason": reason,
                    "updated_at": dt.datetime.now(dt.UTC),
                }
            )


class DynamoDBIdempotencyStore:
    """Store backed by the ``fulfillment-records`` DynamoDB table.

    Table schema: hash key ``fulfillment_key`` (S). ``status`` is a DynamoDB
    reserved word, so the state attribute is addressed as ``#state``.
    """

    TABLE = "fulfillment-records"

    BEGIN_CONDITION = (
        "attribute_not_exists(fulfillment_key)"
        " OR #state = :failed"
        " OR (#state = :in_progress AND lease_expires_at < :now_epoch)"
    )

    def __init__(
        self,
        db: DynamoDBService,
        lease_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._lease_seconds = lease_seconds
        self._clock = clock

    async def try_begin_fulfillment(self, key: str) -> BeginResult:
        now_epoch = int(self._clock())
        attrs = await self._call(
            self._db.update_item,
            self.TABLE,
            {"fulfillment_key": key},
            "SET #state = :in_progress, lease_expires_at = :lease, updated_at = :now"
            " REMOVE failure_reason"
            " ADD attempts :one",
            {
                ":in_progress": FulfillmentState.IN_PROGRESS.value,
                ":failed": FulfillmentState.FAILED.value,
                ":lease": now_epoch + self._lease_seconds,
                ":now_epoch": now_epoch,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
                ":one": 1,
            },
            {"#state": "state"},
            self.BEGIN_CONDITION,
        )
        if attrs is not None:
            return BeginResult(outcome=BeginOutcome.BEGUN, record=self._to_record(attrs))

        # Condition failed: someone else holds or finished the record
        item = await self._call(
            self._db.get_item, self.TABLE, {"fulfillment_key": key}, True
        )
        if item and item.get("state") == FulfillmentState.FULFILLED.value:
            return BeginResult(
                outcome=BeginOutcome.ALREADY_FULFILLED, record=self._to_record(item)
            )
        return BeginResult(
            outcome=BeginOutcome.ALREADY_IN_PROGRESS,
            record=self._to_record(item) if item else None,
        )

    async def record_delivery(self, key: str, item_key: str) -> None:
        await self._call(
            self._db.update_item,
            self.TABLE,
            {"fulfillment_key": key},
            "ADD delivered_items :item SET updated_at = :now",
            {":item": {item_key}, ":now": dt.datetime.now(dt.UTC).isoformat()},
        )

    async def mark_fulfilled(self, key: str) -> None:
        await self._call(
            self._db.update_item,
            self.TABLE,
            {"fulfillment_key": key},
            "SET #state = :state, updated_at = :now REMOVE lease_expires_at, failure_reason",
            {
                ":state": FulfillmentState.FULFILLED.value,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
            },
            {"#state": "state"},
        )

    async def mark_failed(self, key: str, reason: str) -> None:
        await self._call(
            self._db.update_item,
            self.TABLE,
            {"fulfillment_key": key},
            "SET #state = :state, failure_reason = :reason, updated_at = :now"
            " REMOVE lease_expires_at",
            {
                ":state": FulfillmentState.FAILED.value,
                ":reason": reason,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
            },
            {"#state": "state"},
        )

    async def get_record(self, key: str) -> FulfillmentRecord | None:
        item = await self._call(
            self._db.get_item, self.TABLE, {"fulfillment_key": key}, True
        )
        return self._to_record(item) if item else None

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking boto3 call off the event loop."""
        try:
            return await asyncio.to_thread(fn, *args)
        except (ClientError, BotoCoreError) as e:
            logger.error("Idempotency store call %s failed: %s", fn.__name__, e)
            raise IdempotencyStoreError(f"Idempotency store unavailable: {e}") from e

    @staticmethod
    def _to_record(item: dict[str, Any]) -> FulfillmentRecord:
        updated_at = item.get("updated_at")
        lease = item.get("lease_expires_at")
        return FulfillmentRecord(
            fulfillment_key=item["fulfillment_key"],
            state=FulfillmentState(item.get("state", FulfillmentState.UNSEEN.value)),
            attempts=int(item.get("attempts", 0)),
            delivered_items=sorted(item.get("delivered_items", set())),
            lease_expires_at=int(lease) if lease is not None else None,
            failure_reason=item.get("failure_reason"),
            updated_at=dt.datetime.fromisoformat(updated_at) if updated_at else None,
        )
