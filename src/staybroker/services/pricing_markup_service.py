"""Pricing facade: quotes, administrator previews and listing pricing."""

import datetime as dt
from decimal import Decimal
from typing import Any

from ..models.enums import Provider
from ..models.errors import parse_input
from ..models.markup import MarkupPreview, MarkupResult, PricingContext
from ..utils.logging import get_logger
from ..utils.money import format_amount, round_money, to_decimal
from .markup_calculator import calculate
from .markup_resolver import MarkupResolver, get_markup_resolver, select_rule

logger = get_logger(__name__)

# Check-in assumed for listings that do not carry one
LISTING_CHECK_IN_OFFSET_DAYS = 7


class PricingMarkupService:
    """Resolve-then-calculate over the active rule set."""

    def __init__(self, resolver: MarkupResolver | None = None) -> None:
        self.resolver = resolver or get_markup_resolver()

    def quote(self, context: PricingContext | dict[str, Any]) -> MarkupResult:
        """Price a single context.

        A base price of zero or less short-circuits before any rule lookup.

        Raises:
            ValidationError: Malformed context
        """
        ctx = parse_input(PricingContext, context)
        if ctx.base_price <= 0:
            return calculate(ctx.base_price, None)
        return calculate(ctx.base_price, self.resolver.resolve(ctx))

    def preview(self, context: PricingContext | dict[str, Any]) -> MarkupPreview:
        """Test calculation for administrators, with display strings."""
        ctx = parse_input(PricingContext, context)
        result = self.quote(ctx)
        breakdown = {
            "base_price": format_amount(result.base_price),
            "markup_percentage": f"{result.markup_percentage}%",
            "markup_amount": format_amount(result.markup_amount),
            "final_price": format_amount(result.final_price),
            "applied_rule": result.applied_rule.name if result.applied_rule else "none",
        }
        return MarkupPreview(context=ctx, result=result, breakdown=breakdown)

    def apply_to_listings(
        self,
        listings: list[dict[str, Any]],
        provider: Provider | str,
        today: dt.date | None = None,
    ) -> list[dict[str, Any]]:
        """Add a ``pricing`` block to provider search results.

        The base price is read from ``price`` or ``rate``; listings without a
        positive price are returned unchanged. The rule set is loaded once for
        the whole batch.

        Args:
            listings: Provider search results
            provider: Provider the listings came from
            today: Reference date for listings without a check-in date

        Returns:
            New listing dicts with ``pricing`` set and ``price`` replaced by
            the final price
        """
        provider = Provider(provider)
        today = today or dt.date.today()
        default_check_in = today + dt.timedelta(days=LISTING_CHECK_IN_OFFSET_DAYS)
        rules = self.resolver.active_rules()

        priced: list[dict[str, Any]] = []
        for listing in listings:
            base_price = to_decimal(listing.get("price") or listing.get("rate") or 0)
            if base_price <= 0:
                priced.append(dict(listing))
                continue

            ctx = parse_input(
                PricingContext,
                {
                    "base_price": base_price,
                    "provider": provider,
                    "property_type": listing.get("property_type") or "hotel",
                    "destination_code": listing.get("destination_code"),
                    "check_in_date": listing.get("check_in_date") or default_check_in,
                },
            )
            result = calculate(base_price, select_rule(rules, ctx))
            nights = max(1, int(listing.get("nights") or 1))

            updated = dict(listing)
            updated["pricing"] = {
                "base_price": result.base_price,
                "markup_amount": result.markup_amount,
                "markup_percentage": result.markup_percentage,
                "final_price": result.final_price,
                "currency": listing.get("currency") or "USD",
                "per_night": round_money(result.final_price / Decimal(nights)),
                "applied_rule_id": result.applied_rule.rule_id if result.applied_rule else None,
            }
            updated["price"] = result.final_price
            priced.append(updated)

        logger.info("Priced %d %s listings", len(priced), provider.value)
        return priced
