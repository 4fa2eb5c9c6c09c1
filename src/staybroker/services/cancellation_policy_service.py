"""Cancellation fee policy.

Fee tiers by days between the cancellation date and check-in:
- 0%: 7 or more days, or on/before the free-cancellation deadline
- 25%: 3-6 days
- 50%: 1-2 days
- 100%: same day or later
"""

import datetime as dt
from decimal import Decimal

from ..models.booking import CancellationQuote
from ..utils.money import HUNDRED, round_money


class CancellationPolicyService:
    """Computes the cancellation fee for a booking total."""

    # Policy thresholds (days before check-in)
    NO_FEE_DAYS = 7
    QUARTER_FEE_DAYS = 3
    HALF_FEE_DAYS = 1

    # Fee percentages
    NO_FEE_PERCENT = 0
    QUARTER_FEE_PERCENT = 25
    HALF_FEE_PERCENT = 50
    FULL_FEE_PERCENT = 100

    def calculate_fee(
        self,
        total_price: Decimal,
        check_in_date: dt.date,
        cancellation_date: dt.date,
        free_cancellation_until: dt.date | None = None,
    ) -> CancellationQuote:
        """Calculate the fee and the refundable remainder.

        Args:
            total_price: Booking total
            check_in_date: Booking check-in date
            cancellation_date: Date the cancellation happens
            free_cancellation_until: Optional deadline for free cancellation

        Returns:
            CancellationQuote with fee and refund amounts
        """
        days = (check_in_date - cancellation_date).days
        in_free_window = (
            free_cancellation_until is not None
            and cancellation_date <= free_cancellation_until
        )

        if in_free_window:
            percentage = self.NO_FEE_PERCENT
            description = "Free cancellation: within the free-cancellation window"
        elif days >= self.NO_FEE_DAYS:
            percentage = self.NO_FEE_PERCENT
            description = f"No fee: cancelled {days} days before check-in (7+ days)"
        elif days >= self.QUARTER_FEE_DAYS:
            percentage = self.QUARTER_FEE_PERCENT
            description = f"25% fee: cancelled {days} days before check-in (3-6 days)"
        elif days >= self.HALF_FEE_DAYS:
            percentage = self.HALF_FEE_PERCENT
            description = f"50% fee: cancelled {days} days before check-in (1-2 days)"
        else:
            percentage = self.FULL_FEE_PERCENT
            description = "Full fee: cancelled on or after the check-in date"

        total = round_money(total_price)
        fee = round_money(total * percentage / HUNDRED)

        return CancellationQuote(
            days_until_check_in=days,
            fee_percentage=percentage,
            fee_amount=fee,
            refund_amount=total - fee,
            free_cancellation=percentage == self.NO_FEE_PERCENT,
            description=description,
        )

    def get_policy_description(self) -> str:
        return (
            "Cancellation Policy:\n"
            "• Within the free-cancellation window: no fee\n"
            "• 7+ days before check-in: no fee\n"
            "• 3-6 days before check-in: 25% fee\n"
            "• 1-2 days before check-in: 50% fee\n"
            "• Same day: 100% fee"
        )
