"""Standard error codes and exceptions for Staybroker operations.

Every operation fails with a subclass of BrokerError. The category classes
(ValidationError, NotFoundError, ConflictError, ExternalError,
ConsistencyViolation) are what callers branch on; the ErrorCode carries the
precise reason and maps to a message that is safe to show an end user.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator, Optional, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

M = TypeVar("M", bound=BaseModel)


class ErrorCode(str, Enum):
    """Standard error codes."""

    # Validation (ERR_VAL_*)
    INVALID_INPUT = "ERR_VAL_001"
    INVALID_STAY_DATES = "ERR_VAL_002"
    GUEST_SESSION_EXPIRED = "ERR_VAL_003"
    TOO_MANY_BOOKINGS = "ERR_VAL_004"
    REFUND_AMOUNT_INVALID = "ERR_VAL_005"

    # Not found (ERR_NF_*)
    BOOKING_NOT_FOUND = "ERR_NF_001"
    TRANSACTION_NOT_FOUND = "ERR_NF_002"
    RULE_NOT_FOUND = "ERR_NF_003"
    GUEST_SESSION_NOT_FOUND = "ERR_NF_004"

    # Conflict (ERR_CONFLICT_*)
    ALREADY_CANCELLED = "ERR_CONFLICT_001"
    ALREADY_PAID = "ERR_CONFLICT_002"
    DUPLICATE_DEFAULT = "ERR_CONFLICT_003"
    INVALID_TRANSITION = "ERR_CONFLICT_004"
    NOT_REFUNDABLE = "ERR_CONFLICT_005"
    CONCURRENT_UPDATE = "ERR_CONFLICT_006"

    # External (ERR_EXT_*)
    PAYMENT_FAILED = "ERR_EXT_001"
    GATEWAY_TIMEOUT = "ERR_EXT_002"
    GATEWAY_UNAVAILABLE = "ERR_EXT_003"

    # Internal
    CONSISTENCY_VIOLATION = "ERR_INT_001"
    INTERNAL_ERROR = "ERR_INT_002"


# Human-readable error messages (never carry internal detail)
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_INPUT: "The request contains invalid data",
    ErrorCode.INVALID_STAY_DATES: "Check-out must be after check-in and check-in cannot be in the past",
    ErrorCode.GUEST_SESSION_EXPIRED: "Guest session has expired",
    ErrorCode.TOO_MANY_BOOKINGS: "Too many bookings to transfer in one operation",
    ErrorCode.REFUND_AMOUNT_INVALID: "Refund amount exceeds the refundable balance",
    ErrorCode.BOOKING_NOT_FOUND: "Booking not found",
    ErrorCode.TRANSACTION_NOT_FOUND: "Transaction not found",
    ErrorCode.RULE_NOT_FOUND: "Pricing markup rule not found",
    ErrorCode.GUEST_SESSION_NOT_FOUND: "Invalid guest session",
    ErrorCode.ALREADY_CANCELLED: "Booking already cancelled",
    ErrorCode.ALREADY_PAID: "Booking already paid",
    ErrorCode.DUPLICATE_DEFAULT: "Default markup was changed concurrently, please retry",
    ErrorCode.INVALID_TRANSITION: "Booking cannot move to the requested status",
    ErrorCode.NOT_REFUNDABLE: "Transaction cannot be refunded",
    ErrorCode.CONCURRENT_UPDATE: "The record was modified concurrently, please retry",
    ErrorCode.PAYMENT_FAILED: "Payment failed",
    ErrorCode.GATEWAY_TIMEOUT: "Payment failed",
    ErrorCode.GATEWAY_UNAVAILABLE: "Payment failed",
    ErrorCode.CONSISTENCY_VIOLATION: "An internal error occurred",
    ErrorCode.INTERNAL_ERROR: "An internal error occurred",
}


class ErrorResponse(BaseModel):
    """Standard error payload handed back to callers."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
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
            An ErrorResponse with the public message for the code.
        """
        return cls(error_code=code, message=ERROR_MESSAGES[code], details=details)


class BrokerError(Exception):
    """Base exception raised by Staybroker operations."""

    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        code: Optional[ErrorCode] = None,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code or self.default_code
        self.message = ERROR_MESSAGES[self.code]
        self.details = details
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse.from_code(self.code, self.details)


class ValidationError(BrokerError):
    """Malformed or out-of-range input, rejected before any side effect."""

    default_code = ErrorCode.INVALID_INPUT

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ValidationError":
        """Build a domain ValidationError from a pydantic one.

        Args:
            exc: The pydantic validation error

        Returns:
            ValidationError whose details map field path to message.
        """
        details = {
            ".".join(str(p) for p in err["loc"]) or "__root__": err["msg"]
            for err in exc.errors()
        }
        return cls(ErrorCode.INVALID_INPUT, details=details)


class NotFoundError(BrokerError):
    """Unknown booking reference, transaction id, rule id or session."""


class BookingNotFoundError(NotFoundError):
    default_code = ErrorCode.BOOKING_NOT_FOUND


class TransactionNotFoundError(NotFoundError):
    default_code = ErrorCode.TRANSACTION_NOT_FOUND


class RuleNotFoundError(NotFoundError):
    default_code = ErrorCode.RULE_NOT_FOUND


class GuestSessionNotFoundError(NotFoundError):
    default_code = ErrorCode.GUEST_SESSION_NOT_FOUND


class ConflictError(BrokerError):
    """The request contradicts the current state of a record."""

    default_code = ErrorCode.CONCURRENT_UPDATE


class AlreadyCancelledError(ConflictError):
    default_code = ErrorCode.ALREADY_CANCELLED


class AlreadyPaidError(ConflictError):
    default_code = ErrorCode.ALREADY_PAID


class DuplicateDefaultError(ConflictError):
    default_code = ErrorCode.DUPLICATE_DEFAULT


class InvalidTransitionError(ConflictError):
    default_code = ErrorCode.INVALID_TRANSITION


class NotRefundableError(ConflictError):
    default_code = ErrorCode.NOT_REFUNDABLE


class ExternalError(BrokerError):
    """A gateway or provider call failed or timed out.

    Raised by gateway implementations only. The payment manager records it
    on the transaction instead of letting it escape.
    """

    default_code = ErrorCode.PAYMENT_FAILED


class GatewayTimeoutError(ExternalError):
    default_code = ErrorCode.GATEWAY_TIMEOUT


class ConsistencyViolation(BrokerError):
    """Stored payment and booking state disagree."""

    default_code = ErrorCode.CONSISTENCY_VIOLATION


def parse_input(model: type[M], data: M | dict[str, Any]) -> M:
    """Validate boundary input into a model, raising the domain ValidationError.

    Args:
        model: The pydantic input model
        data: An instance of the model or raw field values

    Returns:
        The validated model instance.
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


@contextmanager
def unexpected_errors(
    logger: logging.Logger, operation: str, **details: str
) -> Iterator[None]:
    """Re-raise anything that is not a BrokerError as INTERNAL_ERROR.

    The original exception is logged with its traceback and chained, so a
    storage or SDK failure never reaches callers in raw form.
    """
    try:
        yield
    except BrokerError:
        raise
    except Exception as e:
        logger.exception("Unexpected error in %s: %s", operation, details)
        raise BrokerError(ErrorCode.INTERNAL_ERROR, details=details) from e
