"""Logging with correlation IDs and card-number redaction.

Every logger obtained through ``get_logger`` tags records with the current
correlation ID and masks anything that looks like a full card number.
Booking and payment services report lifecycle steps as one line each::

    Payment operation: refund | transaction_id=TXN-... | amount=50.00
"""

import logging
import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

NO_CORRELATION_ID = "no-correlation-id"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# 13-19 digits, optionally grouped by single spaces or dashes
_CARD_NUMBER = re.compile(r"\b\d(?:[ -]?\d){12,18}\b")


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation ID to the current context, generating one if needed."""
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def clear_correlation_id() -> None:
    _correlation_id.set(None)


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Run a unit of work under a correlation ID, restoring the previous one after."""
    token = _correlation_id.set(correlation_id or generate_correlation_id())
    try:
        yield _correlation_id.get() or NO_CORRELATION_ID
    finally:
        _correlation_id.reset(token)


def redact_card_numbers(text: str) -> str:
    def _mask(match: re.Match[str]) -> str:
        digits = re.sub(r"\D", "", match.group())
        return "*" * (len(digits) - 4) + digits[-4:]

    return _CARD_NUMBER.sub(_mask, text)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class CardNumberRedactionFilter(logging.Filter):
    """Masks full card numbers in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_card_numbers(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class StructuredFormatter(logging.Formatter):
    """Prefixes each line with ``[correlation-id]``."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return f"[{record.correlation_id}] {super().format(record)}"


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    for filter_class in (CorrelationIdFilter, CardNumberRedactionFilter):
        if not any(isinstance(f, filter_class) for f in logger.filters):
            logger.addFilter(filter_class())
    return logger


def configure_logging(level: int | str = logging.INFO) -> logging.Handler:
    """Attach one structured stream handler to the ``staybroker`` logger.

    Safe to call more than once; later calls only change the level.
    """
    root = logging.getLogger("staybroker")
    root.setLevel(level)
    for handler in root.handlers:
        if isinstance(handler.formatter, StructuredFormatter):
            return handler
    handler = logging.StreamHandler()
    handler.setFormatter(
        StructuredFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root.addHandler(handler)
    return handler


def _log_operation(
    logger: logging.Logger,
    area: str,
    operation: str,
    fields: dict[str, Any],
    error: str | None,
) -> None:
    context = {k: v for k, v in fields.items() if v is not None and v != ""}
    if error:
        context["error"] = error

    message = " | ".join(
        [f"{area} operation: {operation}"] + [f"{k}={v}" for k, v in context.items()]
    )
    level = logging.ERROR if error else logging.INFO
    logger.log(level, message, extra={"operation": operation, **context})


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    transaction_id: str | None = None,
    booking_reference: str | None = None,
    amount: Any = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log one payment step (charge, commit, refund).

    Amounts are rendered with ``str`` so Decimals keep their scale; fields
    left as None are omitted.
    """
    fields = {
        "transaction_id": transaction_id,
        "booking_reference": booking_reference,
        "amount": None if amount is None else str(amount),
        "status": status,
        **extra,
    }
    _log_operation(logger, "Payment", operation, fields, error)


def log_booking_operation(
    logger: logging.Logger,
    operation: str,
    *,
    booking_reference: str | None = None,
    booking_status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    fields = {
        "booking_reference": booking_reference,
        "booking_status": booking_status,
        **extra,
    }
    _log_operation(logger, "Booking", operation, fields, error)
