"""Per-client request limits for the mail relay.

Clients are keyed by remote address (API Gateway's source IP under
Mangum). Counters live in process memory, so each Lambda instance or
uvicorn worker enforces the limit on its own.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from fulfillment.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def relay_rate_limit() -> str:
    """Current ``RELAY_RATE_LIMIT`` value, read per request."""
    return get_settings().relay_rate_limit
