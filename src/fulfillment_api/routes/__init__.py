"""API routes package.

- webhooks: Stripe checkout webhook (fulfillment)
- relay: bearer-token authenticated mail relay

All routers are registered in main.py.
"""

from fulfillment_api.routes.relay import router as relay_router
from fulfillment_api.routes.webhooks import router as webhooks_router

__all__ = [
    "relay_router",
    "webhooks_router",
]
