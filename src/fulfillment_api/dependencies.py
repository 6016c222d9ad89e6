"""FastAPI dependency injection providers for fulfillment services.

Collaborators are built once per process with @lru_cache and injected into
routes, so tests can swap any of them through ``app.dependency_overrides``.

Service Dependency Graph:
    FulfillmentSettings (from environment)
        ├── StripeService
        │       └── LineItemResolver
        ├── IdempotencyStore (DynamoDB or in-memory)
        ├── Notifier (SES, SMTP or console)
        │       └── FulfillmentExecutor
        └── FulfillmentEngine

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from fulfillment.config import FulfillmentSettings, get_settings
from fulfillment.services.classifier import EventClassifier
from fulfillment.services.dynamodb import get_dynamodb_service, reset_dynamodb_service
from fulfillment.services.executor import FulfillmentExecutor
from fulfillment.services.fulfillment_engine import FulfillmentEngine, IdempotencyGate
from fulfillment.services.idempotency_store import (
    DynamoDBIdempotencyStore,
    IdempotencyStore,
    InMemoryIdempotencyStore,
)
from fulfillment.services.line_items import LineItemResolver
from fulfillment.services.notifier import Notifier, build_notifier
from fulfillment.services.ssm_service import get_ssm_service
from fulfillment.services.stripe_service import StripeService
from fulfillment_api.rate_limit import limiter


def get_fulfillment_settings() -> FulfillmentSettings:
    """Get process settings."""
    return get_settings()


@lru_cache
def get_stripe_service() -> StripeService:
    """Get cached StripeService instance."""
    return StripeService(settings=get_settings())


@lru_cache
def get_idempotency_store() -> IdempotencyStore:
    """Get cached idempotency store selected by IDEMPOTENCY_BACKEND.

    Raises:
        ValueError: On an unknown backend.
    """
    settings = get_settings()
    if settings.idempotency_backend == "memory":
        return InMemoryIdempotencyStore(lease_seconds=settings.lease_seconds)
    if settings.idempotency_backend == "dynamodb":
        return DynamoDBIdempotencyStore(
            db=get_dynamodb_service(settings.environment),
            lease_seconds=settings.lease_seconds,
        )
    raise ValueError(f"Unknown idempotency backend: {settings.idempotency_backend!r}")


@lru_cache
def get_notifier() -> Notifier:
    """Get cached Notifier selected by NOTIFIER_BACKEND."""
    return build_notifier(get_settings())


@lru_cache
def get_fulfillment_engine() -> FulfillmentEngine:
    """Get cached FulfillmentEngine wired with all collaborators."""
    settings = get_settings()
    store = get_idempotency_store()
    return FulfillmentEngine(
        classifier=EventClassifier.from_settings(settings),
        gate=IdempotencyGate(store, settings.idempotency_key_field),
        resolver=LineItemResolver(get_stripe_service(), settings.asset_id_rule),
        executor=FulfillmentExecutor(
            notifier=get_notifier(),
            store=store,
            link_template=settings.asset_link_template,
            concurrent=settings.concurrent_delivery,
        ),
        store=store,
    )


def reset_services() -> None:
    """Clear all cached service instances, settings and rate-limit counters.

    Call this in test fixtures to ensure clean state between tests.
    """
    get_settings.cache_clear()
    get_stripe_service.cache_clear()
    get_idempotency_store.cache_clear()
    get_notifier.cache_clear()
    get_fulfillment_engine.cache_clear()
    get_ssm_service.cache_clear()
    reset_dynamodb_service()
    limiter.reset()
