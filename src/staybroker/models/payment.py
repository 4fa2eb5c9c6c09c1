"""Payment transaction models and the inputs/outputs of the payment manager.

Card data at rest is limited to brand and last four digits. The full card
number and CVV live only in CardData, which is handed to the gateway and
never written to storage or logs.
"""

import datetime as dt
import re
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, SecretStr, field_validator

from .booking import BookingOwner
from .enums import (
    GatewayName,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
)

_CARD_BRAND_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^4"), "Visa"),
    (re.compile(r"^5[1-5]"), "Mastercard"),
    (re.compile(r"^3[47]"), "American Express"),
    (re.compile(r"^6(?:011|5)"), "Discover"),
]


def detect_card_brand(card_number: str) -> str:
    """Detect the card brand from the leading digits.

    Args:
        card_number: Card number, spaces allowed

    Returns:
        Brand name, or "Unknown"
    """
    digits = re.sub(r"\s+", "", card_number)
    for pattern, brand in _CARD_BRAND_PATTERNS:
        if pattern.match(digits):
            return brand
    return "Unknown"


def mask_card_number(last_four: str | None) -> str | None:
    if not last_four:
        return None
    return f"**** **** **** {last_four}"


class BillingDetails(BaseModel):
    """Billing snapshot stored on the transaction."""

    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None


class CardData(BaseModel):
    """Raw card data for a single gateway call. Never persisted."""

    number: SecretStr
    cvv: SecretStr
    expiry_month: str
    expiry_year: str
    holder_name: str

    @property
    def brand(self) -> str:
        return detect_card_brand(self.number.get_secret_value())

    @property
    def last_four(self) -> str:
        return self.number.get_secret_value()[-4:]


class PaymentDetails(BaseModel):
    """Data required to pay for a booking."""

    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    card_number: SecretStr
    card_holder_name: str = Field(..., min_length=1)
    card_expiry_month: str = Field(..., pattern=r"^(0[1-9]|1[0-2])$")
    card_expiry_year: str = Field(..., pattern=r"^\d{4}$")
    card_cvv: SecretStr
    billing: BillingDetails = Field(default_factory=BillingDetails)

    @field_validator("card_number", mode="before")
    @classmethod
    def _strip_card_number(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = re.sub(r"\s+", "", value)
            if not re.fullmatch(r"\d{12,19}", value):
                raise ValueError("card number must be 12-19 digits")
        return value

    @field_validator("card_cvv", mode="before")
    @classmethod
    def _check_cvv(cls, value: Any) -> Any:
        if isinstance(value, str) and not re.fullmatch(r"\d{3,4}", value):
            raise ValueError("cvv must be 3 or 4 digits")
        return value

    def card_data(self) -> CardData:
        return CardData(
            number=self.card_number,
            cvv=self.card_cvv,
            expiry_month=self.card_expiry_month,
            expiry_year=self.card_expiry_year,
            holder_name=self.card_holder_name,
        )


class PaymentTransaction(BaseModel):
    """A payment, refund or other gateway movement linked to a booking."""

    transaction_id: str
    booking_id: str
    booking_reference: str
    owner: BookingOwner
    gateway: GatewayName
    gateway_transaction_id: str | None = None
    gateway_response_code: str | None = None
    gateway_response_message: str | None = None
    amount: Decimal = Field(..., ge=0)
    currency: str = "USD"
    transaction_type: TransactionType = TransactionType.PAYMENT
    payment_method: PaymentMethod | None = None
    card_brand: str | None = None
    card_last_four: str | None = Field(default=None, max_length=4)
    card_expiry_month: str | None = None
    card_expiry_year: str | None = None
    card_holder_name: str | None = None
    billing: BillingDetails = Field(default_factory=BillingDetails)
    status: TransactionStatus = TransactionStatus.PENDING
    parent_transaction_id: str | None = None
    refund_amount: Decimal | None = None
    refunded_at: dt.datetime | None = None
    refund_reason: str | None = None
    fraud_score: Decimal | None = None
    is_flagged: bool = False
    metadata: dict[str, str] = Field(default_factory=dict)
    processed_at: dt.datetime | None = None
    created_at: dt.datetime
    updated_at: dt.datetime

    @property
    def masked_card_number(self) -> str | None:
        return mask_card_number(self.card_last_four)

    @property
    def is_successful(self) -> bool:
        return self.status == TransactionStatus.SUCCESS

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - (self.refund_amount or Decimal("0"))

    def can_be_refunded(self) -> bool:
        """Only successful payments with a remaining balance are refundable.

        A partial refund keeps the payment in SUCCESS with refund_amount
        tracking what went back; a full refund moves it to REFUNDED.
        """
        if self.transaction_type != TransactionType.PAYMENT:
            return False
        if self.status != TransactionStatus.SUCCESS:
            return False
        return self.refundable_amount > 0

    @property
    def refund_status(self) -> str:
        if not self.refund_amount:
            return "not_refunded"
        if self.refund_amount >= self.amount:
            return "fully_refunded"
        return "partially_refunded"


class ChargeRequest(BaseModel):
    """Masked-safe context sent to the gateway with the card data."""

    model_config = ConfigDict(strict=True)

    transaction_id: str
    booking_reference: str
    amount: Decimal
    currency: str
    description: str
    billing_email: str | None = None


class RefundRequest(BaseModel):
    """Gateway refund call input."""

    model_config = ConfigDict(strict=True)

    transaction_id: str
    parent_gateway_transaction_id: str
    amount: Decimal
    currency: str
    reason: str | None = None


class GatewayResult(BaseModel):
    """What a gateway reports back for one call."""

    success: bool
    gateway_transaction_id: str | None = None
    response_code: str | None = None
    message: str | None = None
    declined: bool = False


class PaymentOutcome(BaseModel):
    """Result of a payment or refund attempt as seen by the caller."""

    model_config = ConfigDict(strict=True)

    success: bool
    transaction_id: str
    booking_reference: str
    status: TransactionStatus
    amount: Decimal
    currency: str
    message: str


class PaymentStatusView(BaseModel):
    """Status lookup result for a transaction id."""

    model_config = ConfigDict(strict=True)

    transaction_id: str
    status: TransactionStatus
    amount: Decimal
    currency: str
    processed_at: dt.datetime | None = None
