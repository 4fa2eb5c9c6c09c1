"""Booking models: the stored booking, its owner and creation inputs."""

import datetime as dt
import os
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from .enums import ActorRole, BookingStatus, PaymentStatus, Provider

# Booking statuses that can still change
OPEN_BOOKING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


class UserOwner(BaseModel):
    """Booking held by a registered user."""

    kind: Literal["user"] = "user"
    user_id: str = Field(..., min_length=1)


class GuestOwner(BaseModel):
    """Booking held by an unauthenticated guest session."""

    kind: Literal["guest"] = "guest"
    session_id: str = Field(..., min_length=1)


BookingOwner = Annotated[Union[UserOwner, GuestOwner], Field(discriminator="kind")]


class UserIdentity(BaseModel):
    """A verified, authenticated user as supplied by the auth layer."""

    user_id: str
    email: EmailStr
    first_name: str
    last_name: str
    phone: str | None = None
    country_code: str | None = None

    @property
    def role(self) -> ActorRole:
        return ActorRole.USER


class GuestIdentity(BaseModel):
    """A verified guest session plus the email the guest presented."""

    session_id: str
    email: EmailStr | None = None

    @property
    def role(self) -> ActorRole:
        return ActorRole.GUEST


class AdminIdentity(BaseModel):
    """An operator acting on any booking."""

    actor_id: str

    @property
    def role(self) -> ActorRole:
        return ActorRole.ADMIN


Requester = Union[UserIdentity, GuestIdentity, AdminIdentity]


class HolderContact(BaseModel):
    """Contact details of the person holding the booking."""

    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = None
    country_code: str | None = None


class PropertySnapshot(BaseModel):
    """Listing data copied onto the booking at creation time."""

    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    property_type: str = "hotel"
    destination_code: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None


class BookingCreate(BaseModel):
    """Data required to create a booking.

    ``holder`` is mandatory for guest bookings; authenticated bookings fall
    back to the user's profile.
    """

    provider: Provider
    listing: PropertySnapshot
    check_in_date: dt.date
    check_out_date: dt.date
    total_rooms: int = Field(default=1, ge=1)
    total_adults: int = Field(..., ge=1)
    total_children: int = Field(default=0, ge=0)
    base_price: Decimal = Field(..., ge=0)
    currency: str = Field(
        default_factory=lambda: os.getenv("DEFAULT_CURRENCY", "USD"),
        min_length=3,
        max_length=3,
    )
    holder: HolderContact | None = None
    free_cancellation_until: dt.date | None = None
    special_requests: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _check_dates(self) -> "BookingCreate":
        if self.check_out_date <= self.check_in_date:
            raise ValueError("check_out_date must be after check_in_date")
        return self

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days


class Booking(BaseModel):
    """A reservation brokered from an upstream provider."""

    booking_id: str
    booking_reference: str
    provider: Provider
    provider_booking_reference: str | None = None
    owner: BookingOwner
    origin_guest_session_id: str | None = Field(
        default=None, description="Guest session the booking was made under, kept after conversion"
    )

    holder_first_name: str
    holder_last_name: str
    holder_email: str
    holder_phone: str | None = None
    holder_country_code: str | None = None

    property_code: str
    property_name: str
    property_type: str = "hotel"
    destination_code: str | None = None
    property_address: str | None = None
    property_city: str | None = None
    property_country: str | None = None

    check_in_date: dt.date
    check_out_date: dt.date
    nights: int = Field(..., gt=0)
    total_rooms: int = 1
    total_adults: int = 1
    total_children: int = 0

    base_price: Decimal
    markup_amount: Decimal
    markup_percentage: Decimal
    total_price: Decimal
    currency: str = "USD"
    applied_rule_id: str | None = None
    special_requests: str | None = None

    payment_status: PaymentStatus = PaymentStatus.PENDING
    booking_status: BookingStatus = BookingStatus.PENDING
    payment_transaction_id: str | None = None
    paid_amount: Decimal | None = None
    paid_at: dt.datetime | None = None

    cancelled_at: dt.datetime | None = None
    cancelled_by: str | None = None
    cancellation_reason: str | None = None
    refund_amount: Decimal | None = None
    is_refundable: bool = True
    free_cancellation_until: dt.date | None = None

    confirmed_at: dt.datetime | None = None
    confirmation_code: str | None = None

    created_at: dt.datetime
    updated_at: dt.datetime

    @property
    def user_id(self) -> str | None:
        return self.owner.user_id if isinstance(self.owner, UserOwner) else None

    @property
    def guest_session_id(self) -> str | None:
        return self.owner.session_id if isinstance(self.owner, GuestOwner) else None

    @property
    def booking_type(self) -> str:
        return self.owner.kind

    @property
    def holder_full_name(self) -> str:
        return f"{self.holder_first_name} {self.holder_last_name}"

    @property
    def total_guests(self) -> int:
        return self.total_adults + self.total_children

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def is_confirmed(self) -> bool:
        return self.booking_status == BookingStatus.CONFIRMED

    def has_free_cancellation(self, today: dt.date) -> bool:
        """Whether today is on or before the free-cancellation deadline."""
        if self.free_cancellation_until is None:
            return False
        return today <= self.free_cancellation_until

    def is_cancellable(self, today: dt.date) -> bool:
        """Whether a cancellation would be accepted without a fee dispute.

        Terminal bookings are never cancellable. Otherwise the free-cancellation
        window wins when set; the fallback is up to one day before check-in.
        """
        if self.booking_status not in OPEN_BOOKING_STATUSES:
            return False
        if self.free_cancellation_until is not None:
            return self.has_free_cancellation(today)
        return today < self.check_in_date - dt.timedelta(days=1)

    def is_owned_by(self, owner: UserOwner | GuestOwner) -> bool:
        return self.owner == owner


class BookingSummary(BaseModel):
    """Public view returned when a guest verifies a booking reference."""

    model_config = ConfigDict(strict=True)

    booking_reference: str
    holder_email: str
    property_name: str
    check_in_date: dt.date
    check_out_date: dt.date
    total_price: Decimal
    currency: str
    booking_status: BookingStatus
    payment_status: PaymentStatus


class CancellationQuote(BaseModel):
    """Fee and refund that apply if a booking is cancelled on a given day."""

    model_config = ConfigDict(strict=True)

    days_until_check_in: int
    fee_percentage: int
    fee_amount: Decimal
    refund_amount: Decimal
    free_cancellation: bool
    description: str
