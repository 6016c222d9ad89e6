"""Backend services for checkout fulfillment."""

from .classifier import EventClassifier
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .executor import FulfillmentExecutor
from .fulfillment_engine import FulfillmentEngine, IdempotencyGate
from .idempotency_store import (
    DynamoDBIdempotencyStore,
    IdempotencyStore,
    InMemoryIdempotencyStore,
)
from .line_items import LineItemResolver
from .notifier import (
    ConsoleNotifier,
    Notifier,
    SESNotifier,
    SMTPNotifier,
    build_notifier,
)
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .stripe_service import StripeService, StripeServiceError

__all__ = [
    "EventClassifier",
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "FulfillmentExecutor",
    "FulfillmentEngine",
    "IdempotencyGate",
    "DynamoDBIdempotencyStore",
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
    "LineItemResolver",
    "ConsoleNotifier",
    "Notifier",
    "SESNotifier",
    "SMTPNotifier",
    "build_notifier",
    "SSMService",
    "SSMServiceError",
    "get_ssm_service",
    "StripeService",
    "StripeServiceError",
]
