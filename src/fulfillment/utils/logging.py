"""Structured logging with a per-request correlation id.

Every line is prefixed with ``[<correlation id>]`` and the webhook and
fulfillment helpers render their context as ``key=value`` pairs, while also
passing it as ``extra`` for log processors that read record attributes.

Usage:
    from fulfillment.utils.logging import get_logger, log_webhook_event

    logger = get_logger(__name__)
    log_webhook_event(logger, event.type, event.id, result="received")
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
NO_CORRELATION_ID = "no-correlation-id"

# Webhook results that should page someone vs. merely stand out
_ERROR_RESULTS = frozenset({"error", "retry"})
_WARNING_RESULTS = frozenset({"duplicate", "skipped"})


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation id to the current context, generating one if absent.

    Returns:
        The id now in effect.
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def clear_correlation_id() -> None:
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Attach ``correlation_id`` to every record passing through."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class StructuredFormatter(logging.Formatter):
    """Prefix formatted records with their correlation id."""

    def format(self, record: logging.LogRecord) -> str:
        cid = getattr(record, "correlation_id", None) or get_correlation_id() or NO_CORRELATION_ID
        return f"[{cid}] {super().format(record)}"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install StructuredFormatter on the root handlers.

    Calling it again re-formats the existing handlers instead of adding more.
    """
    root = logging.getLogger()
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    for handler in root.handlers:
        handler.setFormatter(StructuredFormatter(LOG_FORMAT))
    root.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger carrying the correlation id filter.

    Args:
        name: Logger name (usually __name__)
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger


def _compact(**fields: Any) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None and v != ""}


def _emit(logger: logging.Logger, level: int, headline: str, context: dict[str, Any]) -> None:
    pairs = [f"{k}={v}" for k, v in context.items()]
    logger.log(level, " | ".join([headline, *pairs]), extra=context)


def log_fulfillment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    session_id: str | None = None,
    product_name: str | None = None,
    recipient: str | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log one step of fulfilling a session.

    Logged at ERROR when ``error`` is given, INFO otherwise.

    Args:
        logger: Logger instance
        operation: Step name, e.g. "send_download_link" or "fulfill_session"
        session_id: Checkout session ID
        product_name: Product the step concerns
        recipient: Email recipient
        status: Step outcome
        error: Failure message
        **extra: Additional context fields
    """
    context = _compact(
        session_id=session_id,
        product_name=product_name,
        recipient=recipient,
        status=status,
        error=error,
        **extra,
    )
    level = logging.ERROR if error else logging.INFO
    _emit(logger, level, f"Fulfillment {operation}", {"operation": operation, **context})


def log_webhook_event(
    logger: logging.Logger,
    event_type: str | None,
    event_id: str | None,
    *,
    session_id: str | None = None,
    result: str | None = None,
    reason: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log the handling of one Stripe webhook event.

    ``result`` picks the level: "error" and "retry" log at ERROR,
    "duplicate" and "skipped" at WARNING, anything else at INFO.
    """
    if result in _ERROR_RESULTS:
        level = logging.ERROR
    elif result in _WARNING_RESULTS:
        level = logging.WARNING
    else:
        level = logging.INFO

    context = {
        "event_type": event_type,
        "event_id": event_id,
        **_compact(result=result, session_id=session_id, reason=reason, error=error, **extra),
    }
    _emit(logger, level, f"Webhook {event_type} ({event_id})", context)
