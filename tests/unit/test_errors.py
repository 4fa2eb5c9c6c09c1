"""Unit tests for the error taxonomy and boundary parsing."""

import logging
from decimal import Decimal

import pytest

from staybroker.models.errors import (
    ERROR_MESSAGES,
    AlreadyCancelledError,
    BrokerError,
    ConflictError,
    ErrorCode,
    ErrorResponse,
    ExternalError,
    GatewayTimeoutError,
    NotFoundError,
    TransactionNotFoundError,
    ValidationError,
    parse_input,
    unexpected_errors,
)
from staybroker.models.markup import PricingContext


def test_every_code_has_a_message() -> None:
    """Every error code maps to a public message."""
    assert set(ERROR_MESSAGES) == set(ErrorCode)


@pytest.mark.parametrize(
    "error,category,code",
    [
        (AlreadyCancelledError(), ConflictError, ErrorCode.ALREADY_CANCELLED),
        (TransactionNotFoundError(), NotFoundError, ErrorCode.TRANSACTION_NOT_FOUND),
        (GatewayTimeoutError(), ExternalError, ErrorCode.GATEWAY_TIMEOUT),
    ],
)
def test_subclasses_carry_default_codes(
    error: BrokerError, category: type[BrokerError], code: ErrorCode
) -> None:
    """Each subclass brings its own code and message."""
    assert isinstance(error, category)
    assert error.code == code
    assert str(error) == ERROR_MESSAGES[code]


def test_explicit_code_overrides_default() -> None:
    """A code passed in wins over the class default."""
    error = ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"rule_id": "r"})

    assert error.code == ErrorCode.CONCURRENT_UPDATE
    assert error.details == {"rule_id": "r"}


def test_gateway_errors_surface_generic_message() -> None:
    """Gateway failures never expose provider detail."""
    response = GatewayTimeoutError(details={"gateway": "stripe"}).to_response()

    assert isinstance(response, ErrorResponse)
    assert response.success is False
    assert response.message == "Payment failed"
    assert response.error_code == ErrorCode.GATEWAY_TIMEOUT


class TestParseInput:
    def test_returns_existing_instance(self) -> None:
        """An already-validated model is passed through."""
        ctx = PricingContext(base_price=Decimal("10"))

        assert parse_input(PricingContext, ctx) is ctx

    def test_validates_dict(self) -> None:
        """Raw values are validated into the model."""
        ctx = parse_input(PricingContext, {"base_price": "10.50", "provider": "ownerrez"})

        assert ctx.base_price == Decimal("10.50")

    def test_wraps_pydantic_errors(self) -> None:
        """Pydantic errors become a ValidationError keyed by field."""
        with pytest.raises(ValidationError) as exc_info:
            parse_input(PricingContext, {"base_price": "abc", "provider": "expedia"})

        error = exc_info.value
        assert error.code == ErrorCode.INVALID_INPUT
        assert error.details is not None
        assert "base_price" in error.details
        assert "provider" in error.details


class TestUnexpectedErrors:
    logger = logging.getLogger("staybroker.test.errors")

    def test_broker_errors_pass_through(self) -> None:
        """Domain errors keep their own code."""
        with pytest.raises(TransactionNotFoundError):
            with unexpected_errors(self.logger, "lookup", transaction_id="TXN-1"):
                raise TransactionNotFoundError()

    def test_other_errors_become_internal(self, caplog: pytest.LogCaptureFixture) -> None:
        """Anything else is logged with its context and chained."""
        cause = RuntimeError("socket closed")

        with pytest.raises(BrokerError) as exc_info:
            with unexpected_errors(self.logger, "refund", transaction_id="TXN-1"):
                raise cause

        assert exc_info.value.code == ErrorCode.INTERNAL_ERROR
        assert exc_info.value.details == {"transaction_id": "TXN-1"}
        assert exc_info.value.__cause__ is cause
        assert "Unexpected error in refund" in caplog.text
        assert "TXN-1" in caplog.text
