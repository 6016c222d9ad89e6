"""FastAPI application for checkout fulfillment.

Endpoints:
- POST /webhooks/stripe: Stripe checkout webhook
- POST /send: authenticated mail relay
- GET /ping: liveness check
"""

import logging
import os
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from mangum import Mangum

from fulfillment.utils.logging import configure_logging
from fulfillment_api.exceptions import register_exception_handlers
from fulfillment_api.middleware.correlation import CorrelationIdMiddleware
from fulfillment_api.rate_limit import limiter
from fulfillment_api.routes import relay_router, webhooks_router

logger = logging.getLogger(__name__)
configure_logging(logging.INFO)

app = FastAPI(
    title="Checkout Fulfillment API",
    description="Stripe checkout fulfillment and mail relay",
    version="0.1.0",
)

app.state.limiter = limiter
app.add_middleware(CorrelationIdMiddleware)

register_exception_handlers(app)

app.include_router(webhooks_router)
app.include_router(relay_router)


@app.get("/ping")
async def ping() -> dict[str, Any]:
    """Liveness check."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "checkout-fulfillment",
    }


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "127.0.0.1", port: int | None = None, reload: bool = False) -> None:
    """Run the FastAPI server with uvicorn.

    Args:
        host: Host to bind to
        port: Port to listen on (defaults to PORT env var, then 3000)
        reload: Enable hot reload for development
    """
    import uvicorn

    port = port or int(os.getenv("PORT", "3000"))

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run("fulfillment_api.main:app", host=host, port=port, reload=True)
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
