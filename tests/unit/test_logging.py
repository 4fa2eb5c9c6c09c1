"""Unit tests for structured logging helpers."""

import logging
from decimal import Decimal

import pytest

from staybroker.utils.logging import (
    CardNumberRedactionFilter,
    CorrelationIdFilter,
    StructuredFormatter,
    clear_correlation_id,
    configure_logging,
    correlation_scope,
    get_correlation_id,
    get_logger,
    log_booking_operation,
    log_payment_operation,
    redact_card_numbers,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def reset_correlation_id() -> None:
    clear_correlation_id()


class TestCorrelationId:
    def test_set_generates_when_missing(self) -> None:
        """A fresh ID is generated when none is given."""
        cid = set_correlation_id()

        assert cid
        assert get_correlation_id() == cid

    def test_set_keeps_given_id(self) -> None:
        """A caller-supplied ID is kept as is."""
        assert set_correlation_id("req-1") == "req-1"

    def test_formatter_prefixes_id(self) -> None:
        """Formatted lines start with the bracketed correlation ID."""
        set_correlation_id("req-42")
        record = logging.LogRecord("t", logging.INFO, __file__, 1, "hello", None, None)

        assert StructuredFormatter("%(message)s").format(record) == "[req-42] hello"

    def test_filter_uses_placeholder_without_id(self) -> None:
        """Records outside any request get the placeholder ID."""
        record = logging.LogRecord("t", logging.INFO, __file__, 1, "hello", None, None)

        CorrelationIdFilter().filter(record)

        assert record.correlation_id == "no-correlation-id"  # type: ignore[attr-defined]

    def test_get_logger_adds_filter_once(self) -> None:
        """Repeated lookups do not stack filters."""
        logger = get_logger("staybroker.test")
        get_logger("staybroker.test")

        assert sum(isinstance(f, CorrelationIdFilter) for f in logger.filters) == 1


class TestOperationLogging:
    def test_payment_success_logs_info(self, caplog: pytest.LogCaptureFixture) -> None:
        """A successful payment step is one INFO line with its fields."""
        logger = get_logger("staybroker.test.payment")

        with caplog.at_level(logging.INFO, logger="staybroker.test.payment"):
            log_payment_operation(
                logger,
                "process_payment",
                transaction_id="TXN-1",
                booking_reference="PKG-1",
                amount=Decimal("230.00"),
                status="success",
            )

        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert record.getMessage() == (
            "Payment operation: process_payment | transaction_id=TXN-1 | "
            "booking_reference=PKG-1 | amount=230.00 | status=success"
        )
        assert record.transaction_id == "TXN-1"  # type: ignore[attr-defined]

    def test_error_logs_at_error_level(self, caplog: pytest.LogCaptureFixture) -> None:
        """Passing an error raises the level to ERROR."""
        logger = get_logger("staybroker.test.booking")

        with caplog.at_level(logging.INFO, logger="staybroker.test.booking"):
            log_booking_operation(
                logger, "cancel", booking_reference="PKG-1", error="already cancelled"
            )

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert "error=already cancelled" in record.getMessage()

    def test_empty_fields_are_omitted(self, caplog: pytest.LogCaptureFixture) -> None:
        """Fields left as None do not appear in the line."""
        logger = get_logger("staybroker.test.payment")

        with caplog.at_level(logging.INFO, logger="staybroker.test.payment"):
            log_payment_operation(logger, "refund", transaction_id="TXN-2", success=False)

        assert caplog.records[-1].getMessage() == (
            "Payment operation: refund | transaction_id=TXN-2 | success=False"
        )


class TestCorrelationScope:
    def test_scope_restores_previous_id(self) -> None:
        """Leaving a scope puts the outer ID back."""
        set_correlation_id("outer")

        with correlation_scope("inner") as cid:
            assert cid == "inner"
            assert get_correlation_id() == "inner"

        assert get_correlation_id() == "outer"

    def test_scope_generates_id(self) -> None:
        """A scope without an ID generates one and clears it after."""
        with correlation_scope() as cid:
            assert cid != "no-correlation-id"

        assert get_correlation_id() is None


class TestCardRedaction:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("card 4242424242424242 declined", "card ************4242 declined"),
            ("card 4242 4242 4242 4242", "card ************4242"),
            ("amount 230.00 for PKG-7K2M9QX4HD3BNWRT", "amount 230.00 for PKG-7K2M9QX4HD3BNWRT"),
            ("last four 4242", "last four 4242"),
        ],
    )
    def test_redact_card_numbers(self, text: str, expected: str) -> None:
        """Full card numbers are masked; references and short digit runs are not."""
        assert redact_card_numbers(text) == expected

    def test_filter_redacts_formatted_message(self) -> None:
        """Card numbers passed as arguments are masked too."""
        record = logging.LogRecord(
            "t", logging.INFO, __file__, 1, "charging %s", ("5555555555554444",), None
        )

        CardNumberRedactionFilter().filter(record)

        assert record.getMessage() == "charging ************4444"

    def test_get_logger_installs_redaction(self) -> None:
        """Every service logger masks card numbers."""
        logger = get_logger("staybroker.test.redaction")

        assert any(isinstance(f, CardNumberRedactionFilter) for f in logger.filters)


def test_configure_logging_adds_one_handler() -> None:
    """Configuring twice reuses the handler and only updates the level."""
    root = logging.getLogger("staybroker")
    before = list(root.handlers)
    try:
        first = configure_logging("DEBUG")
        second = configure_logging(logging.WARNING)

        assert first is second
        assert isinstance(first.formatter, StructuredFormatter)
        assert root.level == logging.WARNING
    finally:
        root.handlers = before
        root.setLevel(logging.NOTSET)
