"""FastAPI exception handlers for converting errors to JSON HTTP responses.

The ErrorCode-to-HTTP status mapping decides whether Stripe redelivers:
- 400 Bad Request: bad signature or malformed relay request (no redelivery helps)
- 401 Unauthorized: relay bearer token missing or wrong
- 429 Too Many Requests: relay caller exceeded RELAY_RATE_LIMIT
- 500 Internal Server Error: transient failure, Stripe should redeliver
- 502 Bad Gateway: relay could not hand the message to the mail transport

Any other exception is rendered as a TRANSIENT_FAILURE body with status 500,
so callers always get JSON.

Usage:
    from fulfillment_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

from fulfillment.models.errors import ErrorCode, ErrorResponse, FulfillmentError
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: HTTP_400_BAD_REQUEST,
    ErrorCode.MISSING_FIELDS: HTTP_400_BAD_REQUEST,
    ErrorCode.UNAUTHORIZED: HTTP_401_UNAUTHORIZED,
    ErrorCode.RATE_LIMITED: HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.TRANSIENT_FAILURE: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.EMAIL_DELIVERY_FAILED: HTTP_502_BAD_GATEWAY,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode (400 if not mapped)."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    """Handle FulfillmentError exceptions and convert to JSON response.

    Args:
        request: The incoming request (unused but required by FastAPI)
        exc: The FulfillmentError exception

    Returns:
        JSONResponse with error details and appropriate status code.
    """
    return JSONResponse(
        status_code=get_http_status_for_error(exc.code),
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render slowapi's RateLimitExceeded as a RATE_LIMITED error body."""
    client = request.client.host if request.client else "unknown"
    logger.warning("Rate limit exceeded on %s by %s: %s", request.url.path, client, exc.detail)
    return await fulfillment_error_handler(
        request,
        FulfillmentError(code=ErrorCode.RATE_LIMITED, details={"limit": str(exc.detail)}),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log an unexpected exception and answer with a retryable JSON 500."""
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse.from_code(ErrorCode.TRANSIENT_FAILURE).model_dump(mode="json"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(FulfillmentError, fulfillment_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
