"""Shared utilities."""

from .logging import (
    clear_correlation_id,
    configure_logging,
    correlation_scope,
    get_correlation_id,
    get_logger,
    log_booking_operation,
    log_payment_operation,
    set_correlation_id,
)
from .money import ZERO, round_money

__all__ = [
    "ZERO",
    "clear_correlation_id",
    "configure_logging",
    "correlation_scope",
    "get_correlation_id",
    "get_logger",
    "log_booking_operation",
    "log_payment_operation",
    "round_money",
    "set_correlation_id",
]
