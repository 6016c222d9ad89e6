"""Standard error codes and exceptions for the fulfillment service.

All HTTP-facing failures are expressed as a FulfillmentError carrying one of
these codes so the API layer can render a consistent JSON body and status.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standard error codes."""

    # Webhook error codes (ERR_WEBHOOK_001-ERR_WEBHOOK_002)
    INVALID_WEBHOOK_SIGNATURE = "ERR_WEBHOOK_001"
    TRANSIENT_FAILURE = "ERR_WEBHOOK_002"

    # Relay error codes (ERR_RELAY_001-ERR_RELAY_004)
    UNAUTHORIZED = "ERR_RELAY_001"
    MISSING_FIELDS = "ERR_RELAY_002"
    EMAIL_DELIVERY_FAILED = "ERR_RELAY_003"
    RATE_LIMITED = "ERR_RELAY_004"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.TRANSIENT_FAILURE: "Fulfillment could not be completed, retry later",
    ErrorCode.UNAUTHORIZED: "unauthorized",
    ErrorCode.MISSING_FIELDS: "missing fields",
    ErrorCode.EMAIL_DELIVERY_FAILED: "email_send_error",
    ErrorCode.RATE_LIMITED: "too many requests",
}

# Recovery suggestions for callers
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.TRANSIENT_FAILURE: "Stripe will redeliver the event automatically",
    ErrorCode.UNAUTHORIZED: "Send 'Authorization: Bearer <api key>'",
    ErrorCode.MISSING_FIELDS: "Provide 'to', 'subject' and 'text' or 'html'",
    ErrorCode.EMAIL_DELIVERY_FAILED: "Check mail transport credentials and try again",
    ErrorCode.RATE_LIMITED: "Wait for the rate limit window to pass before sending again",
}


class ErrorResponse(BaseModel):
    """Standard JSON error body returned by the API."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class FulfillmentError(Exception):
    """Exception raised at the HTTP boundary.

    Converted to an ErrorResponse by the API exception handlers.
    """

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse.from_code(self.code, self.details)


class RetryableError(Exception):
    """Whole-run infrastructure failure that a webhook redelivery may fix."""


class DeliveryError(Exception):
    """A notifier failed to deliver one message."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class IdempotencyStoreError(RetryableError):
    """The idempotency store could not be read or written."""

