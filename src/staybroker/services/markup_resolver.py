"""Selects the markup rule that applies to a pricing context."""

from ..models.enums import RuleProvider
from ..models.markup import PricingContext, PricingMarkupRule
from ..utils.logging import get_logger
from .markup_cache import ActiveRuleCache
from .markup_rule_store import MarkupRuleStore

logger = get_logger(__name__)


def rule_matches(rule: PricingMarkupRule, context: PricingContext) -> bool:
    """Whether every filter set on the rule accepts the context."""
    if rule.provider != RuleProvider.ALL:
        if context.provider is None or rule.provider.value != context.provider.value:
            return False
    if rule.property_type and rule.property_type != context.property_type:
        return False
    if rule.destination_code and rule.destination_code != context.destination_code:
        return False
    if rule.min_price is not None and context.base_price < rule.min_price:
        return False
    if rule.max_price is not None and context.base_price > rule.max_price:
        return False
    return rule.is_valid_on(context.check_in_date)


def select_rule(
    rules: list[PricingMarkupRule], context: PricingContext
) -> PricingMarkupRule | None:
    """First match over rules in evaluation order, else the default rule.

    Args:
        rules: Active rules, priority descending then newest first
        context: The pricing context

    Returns:
        The applicable rule, or None for no markup
    """
    for rule in rules:
        if rule_matches(rule, context):
            return rule
    for rule in rules:
        if rule.is_default:
            return rule
    return None


class MarkupResolver:
    """Resolves contexts against the cached active rule set.

    The resolver owns the cache and registers its invalidate() with the
    store, so every rule mutation drops the cached list.
    """

    def __init__(
        self,
        store: MarkupRuleStore | None = None,
        cache: ActiveRuleCache | None = None,
    ) -> None:
        self.store = store or MarkupRuleStore()
        self.cache = cache or ActiveRuleCache(self.store.list_active_rules)
        self.store.subscribe(self.cache.invalidate)

    def active_rules(self) -> list[PricingMarkupRule]:
        return self.cache.get()

    def resolve(self, context: PricingContext) -> PricingMarkupRule | None:
        rule = select_rule(self.cache.get(), context)
        if rule is not None:
            logger.debug("Markup rule %s applies to %s", rule.rule_id, context.provider)
        return rule


_resolver: MarkupResolver | None = None


def get_markup_resolver() -> MarkupResolver:
    """Shared resolver, so default-constructed services share one rule cache."""
    global _resolver
    if _resolver is None:
        _resolver = MarkupResolver()
    return _resolver


def reset_markup_resolver() -> None:
    global _resolver
    _resolver = None
