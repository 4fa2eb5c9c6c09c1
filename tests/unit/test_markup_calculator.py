"""Unit tests for the markup calculator.

Covers percentage, fixed and tiered arithmetic, rounding and the
non-positive base price short-circuit.
"""

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import pytest

from staybroker.models.enums import MarkupType
from staybroker.models.markup import MarkupTier, PricingMarkupRule
from staybroker.services.markup_calculator import calculate, find_tier

CREATED = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)


def make_rule(**overrides: Any) -> PricingMarkupRule:
    data: dict[str, Any] = {
        "rule_id": "rule-1",
        "name": "Test rule",
        "markup_type": MarkupType.PERCENTAGE,
        "percentage": Decimal("15"),
        "created_at": CREATED,
        "updated_at": CREATED,
    }
    data.update(overrides)
    return PricingMarkupRule(**data)


class TestPercentageMarkup:
    def test_fifteen_percent_on_two_hundred(self) -> None:
        """15% of 200.00 adds 30.00."""
        result = calculate(Decimal("200.00"), make_rule())

        assert result.markup_amount == Decimal("30.00")
        assert result.markup_percentage == Decimal("15.00")
        assert result.final_price == Decimal("230.00")
        assert result.applied_rule is not None
        assert result.applied_rule.rule_id == "rule-1"

    @pytest.mark.parametrize(
        "price,percentage",
        [
            ("0.01", "15"),
            ("99.99", "12.5"),
            ("100.01", "15"),
            ("1234.56", "7.25"),
            ("19.95", "33.33"),
            ("5000", "100"),
            ("42.42", "0"),
        ],
    )
    def test_final_price_is_rounded_base_plus_percentage(self, price: str, percentage: str) -> None:
        """Final price is always base plus rounded markup."""
        p = Decimal(price)
        pct = Decimal(percentage)
        expected = (p + p * pct / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

        result = calculate(p, make_rule(percentage=pct))

        assert result.final_price == expected
        assert result.base_price + result.markup_amount == result.final_price

    def test_rounds_half_up(self) -> None:
        """Half cents round up."""
        # 10.10 * 15% = 1.515
        result = calculate(Decimal("10.10"), make_rule())

        assert result.markup_amount == Decimal("1.52")
        assert result.final_price == Decimal("11.62")

    def test_accepts_float_base_price(self) -> None:
        """Float prices are converted without binary noise."""
        result = calculate(200.0, make_rule())

        assert result.final_price == Decimal("230.00")


class TestFixedMarkup:
    def test_fixed_fifty_on_three_hundred(self) -> None:
        """A fixed markup reports its effective percentage."""
        rule = make_rule(markup_type=MarkupType.FIXED, percentage=None, fixed_amount=Decimal("50"))

        result = calculate(Decimal("300.00"), rule)

        assert result.markup_amount == Decimal("50.00")
        assert result.markup_percentage == Decimal("16.67")
        assert result.final_price == Decimal("350.00")

    def test_fixed_amount_may_exceed_base_price(self) -> None:
        """Fixed amounts are not capped at the base price."""
        rule = make_rule(markup_type=MarkupType.FIXED, percentage=None, fixed_amount=Decimal("150"))

        result = calculate(Decimal("100.00"), rule)

        assert result.markup_amount == Decimal("150.00")
        assert result.markup_percentage == Decimal("150.00")
        assert result.final_price == Decimal("250.00")


class TestTieredMarkup:
    @pytest.fixture
    def tiered_rule(self) -> PricingMarkupRule:
        return make_rule(
            markup_type=MarkupType.TIERED,
            percentage=None,
            tiers=[
                MarkupTier(min=Decimal("0"), max=Decimal("100"), percentage=Decimal("20")),
                MarkupTier(min=Decimal("100"), max=Decimal("999999"), percentage=Decimal("10")),
            ],
        )

    def test_second_tier_matches(self, tiered_rule: PricingMarkupRule) -> None:
        """A price in the second band uses that band's percentage."""
        result = calculate(Decimal("150.00"), tiered_rule)

        assert result.markup_amount == Decimal("15.00")
        assert result.markup_percentage == Decimal("10.00")
        assert result.final_price == Decimal("165.00")

    def test_shared_bound_goes_to_first_tier(self, tiered_rule: PricingMarkupRule) -> None:
        """A price on a shared bound belongs to the lower tier."""
        result = calculate(Decimal("100.00"), tiered_rule)

        assert result.markup_amount == Decimal("20.00")

    def test_no_matching_tier_means_zero_markup(self, tiered_rule: PricingMarkupRule) -> None:
        """A price outside every tier keeps the rule but adds nothing."""
        result = calculate(Decimal("1000000.00"), tiered_rule)

        assert result.markup_amount == Decimal("0.00")
        assert result.final_price == Decimal("1000000.00")
        assert result.applied_rule is not None

    def test_find_tier_open_ended(self) -> None:
        """A tier without max covers everything above its min."""
        tiers = [MarkupTier(min=Decimal("500"), percentage=Decimal("5"))]

        assert find_tier(tiers, Decimal("10000")) is tiers[0]
        assert find_tier(tiers, Decimal("499.99")) is None


class TestNoRule:
    def test_no_rule_keeps_base_price(self) -> None:
        """Without a rule the price is unchanged."""
        result = calculate(Decimal("80.00"), None)

        assert result.markup_amount == Decimal("0.00")
        assert result.final_price == Decimal("80.00")
        assert result.applied_rule is None

    @pytest.mark.parametrize("base", [Decimal("0"), Decimal("-10.00")])
    def test_non_positive_base_is_all_zero(self, base: Decimal) -> None:
        """Zero and negative prices short-circuit to zeros."""
        result = calculate(base, make_rule())

        assert result.base_price == Decimal("0.00")
        assert result.markup_amount == Decimal("0.00")
        assert result.final_price == Decimal("0.00")
        assert result.applied_rule is None
