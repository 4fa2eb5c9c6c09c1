"""Pricing markup rule models and the quote value objects.

Percentages are expressed on a 0-100 scale (15 means 15%), never 0-1.
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import MarkupType, Provider, RuleProvider, RuleState


class MarkupTier(BaseModel):
    """One price band of a tiered rule. Bounds are inclusive."""

    min: Decimal = Field(default=Decimal("0"), ge=0)
    max: Decimal | None = Field(default=None, description="Open-ended when absent")
    percentage: Decimal = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def _check_bounds(self) -> "MarkupTier":
        if self.max is not None and self.max < self.min:
            raise ValueError("tier max must be greater than or equal to min")
        return self

    def contains(self, price: Decimal) -> bool:
        """Whether price falls inside [min, max]."""
        if price < self.min:
            return False
        return self.max is None or price <= self.max


class RuleDefinition(BaseModel):
    """The administrator-editable part of a markup rule."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    markup_type: MarkupType
    percentage: Decimal | None = Field(default=None, ge=0, le=100)
    fixed_amount: Decimal | None = Field(default=None, ge=0)
    tiers: list[MarkupTier] = Field(default_factory=list)
    provider: RuleProvider = RuleProvider.ALL
    property_type: str | None = None
    destination_code: str | None = None
    min_price: Decimal | None = Field(default=None, ge=0)
    max_price: Decimal | None = Field(default=None, ge=0)
    valid_from: dt.date | None = None
    valid_to: dt.date | None = None
    priority: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_type_requirements(self) -> "RuleDefinition":
        if self.markup_type == MarkupType.PERCENTAGE and self.percentage is None:
            raise ValueError("percentage is required for percentage rules")
        if self.markup_type == MarkupType.FIXED and self.fixed_amount is None:
            raise ValueError("fixed_amount is required for fixed rules")
        if self.markup_type == MarkupType.TIERED and not self.tiers:
            raise ValueError("tiers are required for tiered rules")
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.max_price < self.min_price
        ):
            raise ValueError("max_price must be greater than or equal to min_price")
        if (
            self.valid_from is not None
            and self.valid_to is not None
            and self.valid_to <= self.valid_from
        ):
            raise ValueError("valid_to must be after valid_from")
        return self


class RuleCreate(RuleDefinition):
    """Data required to create a markup rule."""

    activate: bool = Field(default=True, description="Create as active instead of draft")


class RuleUpdate(BaseModel):
    """Fields that can be changed on an existing rule.

    Only fields explicitly set are applied; the merged rule is validated
    again as a whole.
    """

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    markup_type: MarkupType | None = None
    percentage: Decimal | None = Field(default=None, ge=0, le=100)
    fixed_amount: Decimal | None = Field(default=None, ge=0)
    tiers: list[MarkupTier] | None = None
    provider: RuleProvider | None = None
    property_type: str | None = None
    destination_code: str | None = None
    min_price: Decimal | None = Field(default=None, ge=0)
    max_price: Decimal | None = Field(default=None, ge=0)
    valid_from: dt.date | None = None
    valid_to: dt.date | None = None
    priority: int | None = Field(default=None, ge=0)


class PricingMarkupRule(RuleDefinition):
    """A stored markup rule."""

    rule_id: str = Field(..., description="Unique rule ID")
    state: RuleState = RuleState.ACTIVE
    is_default: bool = False
    created_by: str | None = None
    updated_by: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime

    @property
    def is_active(self) -> bool:
        return self.state == RuleState.ACTIVE

    def is_valid_on(self, day: dt.date) -> bool:
        """Whether the rule is active and day sits in its validity window."""
        if not self.is_active:
            return False
        if self.valid_from is not None and day < self.valid_from:
            return False
        if self.valid_to is not None and day > self.valid_to:
            return False
        return True


class PricingContext(BaseModel):
    """Input to the resolver and calculator. Never persisted."""

    base_price: Decimal
    provider: Provider | None = None
    property_type: str | None = "hotel"
    destination_code: str | None = None
    check_in_date: dt.date = Field(default_factory=dt.date.today)


class AppliedRule(BaseModel):
    """Identity of the rule a result was computed with."""

    model_config = ConfigDict(strict=True)

    rule_id: str
    name: str
    markup_type: MarkupType


class MarkupResult(BaseModel):
    """Markup breakdown for one base price, all amounts rounded to 2 dp."""

    model_config = ConfigDict(strict=True)

    base_price: Decimal
    markup_amount: Decimal
    markup_percentage: Decimal
    final_price: Decimal
    applied_rule: AppliedRule | None = None


class MarkupPreview(BaseModel):
    """Result of an administrator test calculation."""

    context: PricingContext
    result: MarkupResult
    breakdown: dict[str, str]
