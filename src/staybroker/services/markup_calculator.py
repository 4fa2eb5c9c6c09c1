"""Markup arithmetic for percentage, fixed and tiered rules.

Pure functions with no I/O. Amounts are Decimal and every output is rounded
half-up to two decimal places.
"""

from decimal import Decimal

from ..models.enums import MarkupType
from ..models.markup import AppliedRule, MarkupResult, MarkupTier, PricingMarkupRule
from ..utils.money import HUNDRED, ZERO, round_money, to_decimal


def find_tier(tiers: list[MarkupTier], price: Decimal) -> MarkupTier | None:
    """First tier in stored order whose inclusive [min, max] holds price."""
    for tier in tiers:
        if tier.contains(price):
            return tier
    return None


def zero_result(base_price: Decimal) -> MarkupResult:
    base = round_money(base_price)
    return MarkupResult(
        base_price=base,
        markup_amount=ZERO,
        markup_percentage=ZERO,
        final_price=base,
        applied_rule=None,
    )


def calculate(base_price: Decimal | float | int, rule: PricingMarkupRule | None) -> MarkupResult:
    """Compute the markup breakdown for a base price under a rule.

    A base price of zero or less yields an all-zero result and no rule is
    reported. With no rule the final price equals the base price.

    Args:
        base_price: Upstream price before markup
        rule: The resolved rule, or None

    Returns:
        MarkupResult with amounts rounded to 2 dp
    """
    base = to_decimal(base_price)
    if base <= 0:
        return MarkupResult(
            base_price=ZERO,
            markup_amount=ZERO,
            markup_percentage=ZERO,
            final_price=ZERO,
            applied_rule=None,
        )
    if rule is None:
        return zero_result(base)

    if rule.markup_type == MarkupType.PERCENTAGE:
        percentage = rule.percentage or ZERO
        raw_amount = base * percentage / HUNDRED
    elif rule.markup_type == MarkupType.FIXED:
        raw_amount = rule.fixed_amount or ZERO
        # Display only: the fixed amount expressed against this base
        percentage = raw_amount / base * HUNDRED
    else:
        tier = find_tier(rule.tiers, base)
        percentage = tier.percentage if tier else ZERO
        raw_amount = base * percentage / HUNDRED

    return MarkupResult(
        base_price=round_money(base),
        markup_amount=round_money(raw_amount),
        markup_percentage=round_money(percentage),
        final_price=round_money(base + raw_amount),
        applied_rule=AppliedRule(
            rule_id=rule.rule_id,
            name=rule.name,
            markup_type=rule.markup_type,
        ),
    )
