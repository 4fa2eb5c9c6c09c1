"""Booking lifecycle: creation, ownership reads, cancellation and transitions.

A booking is created pending/pending. Payment moves it to confirmed (see
PaymentService); everything else that changes its status goes through this
service and is written as a conditional update on the status read, so two
concurrent requests cannot both apply a transition.

Tables:
- ``bookings`` keyed by booking_id, with user_id-index and
  guest_session_id-index holding the current owner
- ``booking-references`` mapping booking_reference to booking_id; written in
  the same transaction as the booking so references stay unique
"""

import datetime as dt
import uuid
from typing import Any, Callable

from ..models.booking import (
    AdminIdentity,
    Booking,
    BookingCreate,
    BookingSummary,
    CancellationQuote,
    GuestIdentity,
    GuestOwner,
    HolderContact,
    Requester,
    UserIdentity,
    UserOwner,
)
from ..models.enums import ActorRole, BookingStatus
from ..models.errors import (
    AlreadyCancelledError,
    BookingNotFoundError,
    ConflictError,
    ErrorCode,
    ValidationError,
    parse_input,
    unexpected_errors,
)
from ..models.markup import PricingContext
from ..utils.logging import get_logger, log_booking_operation
from ..utils.money import ZERO, round_money
from ..utils.references import generate_booking_reference
from .booking_state import assert_booking_transition, sources_for
from .cancellation_policy_service import CancellationPolicyService
from .dynamodb import DynamoDBService, get_dynamodb_service, to_item
from .guest_session_service import GuestSessionService
from .pricing_markup_service import PricingMarkupService

logger = get_logger(__name__)

BOOKINGS_TABLE = "bookings"
REFERENCES_TABLE = "booking-references"

REFERENCE_ATTEMPTS = 3
# DynamoDB allows 100 items per transaction; one is the session update
MAX_CONVERTED_BOOKINGS = 99

_STATUS_NAMES = {"#status": "booking_status"}


def booking_item(booking: Booking) -> dict[str, Any]:
    """Stored shape: the model plus flat owner keys for the GSIs."""
    item = to_item(booking)
    if isinstance(booking.owner, UserOwner):
        item["user_id"] = booking.owner.user_id
    else:
        item["guest_session_id"] = booking.owner.session_id
    return item


def _status_condition(sources: list[BookingStatus]) -> tuple[str, dict[str, Any]]:
    placeholders = {f":src{i}": s.value for i, s in enumerate(sources)}
    return f"#status IN ({', '.join(placeholders)})", placeholders


class BookingService:
    """Creates bookings and drives their status transitions."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        pricing: PricingMarkupService | None = None,
        sessions: GuestSessionService | None = None,
        policy: CancellationPolicyService | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))
        self.pricing = pricing or PricingMarkupService()
        self.sessions = sessions or GuestSessionService(self.db, clock=self._clock)
        self.policy = policy or CancellationPolicyService()

    def _today(self) -> dt.date:
        return self._clock().date()

    # Creation

    def create_booking(
        self,
        data: BookingCreate | dict[str, Any],
        identity: UserIdentity | GuestIdentity,
    ) -> Booking:
        """Price and persist a new pending booking.

        Args:
            data: Booking input
            identity: Verified user, or verified guest session

        Returns:
            The stored booking

        Raises:
            ValidationError: Invalid input, past check-in, missing holder for
                a guest, or an expired guest session
            GuestSessionNotFoundError: Unknown guest session
        """
        payload = parse_input(BookingCreate, data)
        now = self._clock()
        if payload.check_in_date < now.date():
            raise ValidationError(
                ErrorCode.INVALID_STAY_DATES,
                details={"check_in_date": "check-in cannot be in the past"},
            )

        owner_id = identity.session_id if isinstance(identity, GuestIdentity) else identity.user_id
        with unexpected_errors(logger, "create_booking", owner_id=owner_id):
            if isinstance(identity, GuestIdentity):
                if payload.holder is None or not payload.holder.phone:
                    raise ValidationError(
                        details={"holder": "holder contact with phone is required"}
                    )
                self.sessions.get_active_session(identity.session_id)
                holder = payload.holder
                owner: UserOwner | GuestOwner = GuestOwner(session_id=identity.session_id)
            else:
                holder = payload.holder or HolderContact(
                    first_name=identity.first_name,
                    last_name=identity.last_name,
                    email=identity.email,
                    phone=identity.phone,
                    country_code=identity.country_code,
                )
                owner = UserOwner(user_id=identity.user_id)

            origin_session_id = owner.session_id if isinstance(owner, GuestOwner) else None
            listing = payload.listing
            quote = self.pricing.quote(
                PricingContext(
                    base_price=round_money(payload.base_price),
                    provider=payload.provider,
                    property_type=listing.property_type,
                    destination_code=listing.destination_code,
                    check_in_date=payload.check_in_date,
                )
            )

            for attempt in range(1, REFERENCE_ATTEMPTS + 1):
                booking = Booking(
                    booking_id=str(uuid.uuid4()),
                    booking_reference=generate_booking_reference(),
                    provider=payload.provider,
                    owner=owner,
                    origin_guest_session_id=origin_session_id,
                    holder_first_name=holder.first_name,
                    holder_last_name=holder.last_name,
                    holder_email=holder.email,
                    holder_phone=holder.phone,
                    holder_country_code=holder.country_code,
                    property_code=listing.code,
                    property_name=listing.name,
                    property_type=listing.property_type,
                    destination_code=listing.destination_code,
                    property_address=listing.address,
                    property_city=listing.city,
                    property_country=listing.country,
                    check_in_date=payload.check_in_date,
                    check_out_date=payload.check_out_date,
                    nights=payload.nights,
                    total_rooms=payload.total_rooms,
                    total_adults=payload.total_adults,
                    total_children=payload.total_children,
                    base_price=quote.base_price,
                    markup_amount=quote.markup_amount,
                    markup_percentage=quote.markup_percentage,
                    total_price=quote.base_price + quote.markup_amount,
                    currency=payload.currency.upper(),
                    applied_rule_id=quote.applied_rule.rule_id if quote.applied_rule else None,
                    special_requests=payload.special_requests,
                    free_cancellation_until=payload.free_cancellation_until,
                    created_at=now,
                    updated_at=now,
                )
                ops = [
                    self.db.put_op(
                        REFERENCES_TABLE,
                        {
                            "booking_reference": booking.booking_reference,
                            "booking_id": booking.booking_id,
                        },
                        condition_expression="attribute_not_exists(booking_reference)",
                    ),
                    self.db.put_op(
                        BOOKINGS_TABLE,
                        booking_item(booking),
                        condition_expression="attribute_not_exists(booking_id)",
                    ),
                ]
                if isinstance(owner, GuestOwner):
                    ops.append(self.sessions.booking_placed_op(owner.session_id, holder, now))

                with unexpected_errors(
                    logger, "create_booking", booking_reference=booking.booking_reference
                ):
                    committed = self.db.transact_write(ops)
                if committed:
                    log_booking_operation(
                        logger,
                        "create_booking",
                        booking_reference=booking.booking_reference,
                        booking_status=booking.booking_status.value,
                        booking_type=booking.booking_type,
                        total_price=str(booking.total_price),
                    )
                    return booking

                if isinstance(owner, GuestOwner):
                    # Raises if the session expired or converted meanwhile
                    self.sessions.get_active_session(owner.session_id)
                logger.warning(
                    "Booking write attempt %d cancelled, retrying with a new reference",
                    attempt,
                )

            log_booking_operation(logger, "create_booking", error="reference retries exhausted")
            raise ConflictError(ErrorCode.CONCURRENT_UPDATE)

    # Reads

    def _find(self, reference: str) -> Booking | None:
        pointer = self.db.get_item(REFERENCES_TABLE, {"booking_reference": reference})
        if not pointer:
            return None
        item = self.db.get_item(BOOKINGS_TABLE, {"booking_id": pointer["booking_id"]})
        return Booking.model_validate(item) if item else None

    def get_booking(self, reference: str) -> Booking:
        """Get a booking by reference.

        Raises:
            BookingNotFoundError: Unknown reference
        """
        booking = self._find(reference)
        if booking is None:
            raise BookingNotFoundError(details={"booking_reference": reference})
        return booking

    def get_booking_for_owner(self, reference: str, requester: Requester) -> Booking:
        """Get a booking the requester may see.

        Users see their own bookings; guests see bookings of their session
        and must present the holder email; admins see everything. Anything
        else is reported as not found.
        """
        booking = self.get_booking(reference)
        if isinstance(requester, AdminIdentity):
            return booking
        if isinstance(requester, UserIdentity):
            if booking.is_owned_by(UserOwner(user_id=requester.user_id)):
                return booking
        elif isinstance(requester, GuestIdentity):
            email_matches = (
                requester.email is not None
                and requester.email.lower() == booking.holder_email.lower()
            )
            if email_matches and booking.is_owned_by(GuestOwner(session_id=requester.session_id)):
                return booking
        raise BookingNotFoundError(details={"booking_reference": reference})

    def list_user_bookings(
        self, user_id: str, status: BookingStatus | None = None
    ) -> list[Booking]:
        """A user's bookings, newest first."""
        items = self.db.query_by_gsi(BOOKINGS_TABLE, "user_id-index", "user_id", user_id)
        bookings = [Booking.model_validate(i) for i in items]
        if status is not None:
            bookings = [b for b in bookings if b.booking_status == status]
        return sorted(bookings, key=lambda b: b.created_at, reverse=True)

    def list_session_bookings(self, session_id: str) -> list[Booking]:
        """Bookings currently owned by a guest session.

        Args:
            session_id: Guest session ID

        Returns:
            The session's bookings in index order; empty once converted
        """
        items = self.db.query_by_gsi(
            BOOKINGS_TABLE, "guest_session_id-index", "guest_session_id", session_id
        )
        return [Booking.model_validate(i) for i in items]

    def verify_guest_booking(self, reference: str) -> BookingSummary:
        """Public summary of a booking made under a guest session."""
        booking = self.get_booking(reference)
        if booking.origin_guest_session_id is None:
            raise BookingNotFoundError(details={"booking_reference": reference})
        return BookingSummary(
            booking_reference=booking.booking_reference,
            holder_email=booking.holder_email,
            property_name=booking.property_name,
            check_in_date=booking.check_in_date,
            check_out_date=booking.check_out_date,
            total_price=booking.total_price,
            currency=booking.currency,
            booking_status=booking.booking_status,
            payment_status=booking.payment_status,
        )

    # Cancellation and transitions

    def quote_cancellation(self, booking: Booking, on: dt.date | None = None) -> CancellationQuote:
        return self.policy.calculate_fee(
            booking.total_price,
            booking.check_in_date,
            on or self._today(),
            booking.free_cancellation_until,
        )

    def _conditional_transition(
        self,
        booking: Booking,
        target: BookingStatus,
        sets: dict[str, Any],
    ) -> Booking:
        """Write target status if the stored status is still a valid source."""
        condition, values = _status_condition(sources_for(target))
        values[":target"] = target.value
        assignments = ["#status = :target"]
        for name, value in sets.items():
            values[f":{name}"] = value
            assignments.append(f"{name} = :{name}")

        attrs = self.db.update_item(
            BOOKINGS_TABLE,
            key={"booking_id": booking.booking_id},
            update_expression="SET " + ", ".join(assignments),
            expression_attribute_values=values,
            expression_attribute_names=_STATUS_NAMES,
            condition_expression=condition,
        )
        if attrs is None:
            # Lost to a concurrent transition; report against the fresh state
            current = self.get_booking(booking.booking_reference)
            assert_booking_transition(current.booking_status, target)
            raise ConflictError(
                ErrorCode.CONCURRENT_UPDATE,
                details={"booking_reference": booking.booking_reference},
            )
        return Booking.model_validate(attrs)

    def cancel(
        self,
        reference: str,
        requester: Requester,
        reason: str | None = None,
    ) -> Booking:
        """Cancel a booking on behalf of its owner or an admin.

        The fee follows the cancellation policy; refund_amount is the total
        less the fee for paid bookings and zero otherwise.

        Raises:
            BookingNotFoundError: Unknown reference or not the requester's
            AlreadyCancelledError: The booking is already cancelled
            InvalidTransitionError: The booking is completed, no-show or rejected
        """
        with unexpected_errors(logger, "cancel", booking_reference=reference):
            booking = self.get_booking_for_owner(reference, requester)
            assert_booking_transition(booking.booking_status, BookingStatus.CANCELLED)

            now = self._clock()
            quote = self.quote_cancellation(booking, now.date())
            refund_amount = quote.refund_amount if booking.is_paid else ZERO

            try:
                cancelled = self._conditional_transition(
                    booking,
                    BookingStatus.CANCELLED,
                    {
                        "cancelled_at": now,
                        "cancelled_by": requester.role.value,
                        "cancellation_reason": reason,
                        "refund_amount": refund_amount,
                        "is_refundable": refund_amount > 0,
                        "updated_at": now,
                    },
                )
            except AlreadyCancelledError:
                log_booking_operation(
                    logger, "cancel", booking_reference=reference, error="already cancelled"
                )
                raise

        log_booking_operation(
            logger,
            "cancel",
            booking_reference=reference,
            booking_status=cancelled.booking_status.value,
            cancelled_by=requester.role.value,
            fee_percentage=quote.fee_percentage,
            refund_amount=str(refund_amount),
        )
        return cancelled

    def _operator_transition(
        self, reference: str, target: BookingStatus, sets: dict[str, Any]
    ) -> Booking:
        with unexpected_errors(logger, target.value, booking_reference=reference):
            booking = self.get_booking(reference)
            assert_booking_transition(booking.booking_status, target)
            updated = self._conditional_transition(
                booking, target, {**sets, "updated_at": self._clock()}
            )
        log_booking_operation(
            logger,
            target.value,
            booking_reference=reference,
            booking_status=updated.booking_status.value,
        )
        return updated

    def reject(self, reference: str, actor: AdminIdentity, reason: str | None = None) -> Booking:
        """Provider or operator refused a pending booking."""
        return self._operator_transition(
            reference,
            BookingStatus.REJECTED,
            {
                "cancelled_by": f"{ActorRole.ADMIN.value}:{actor.actor_id}",
                "cancellation_reason": reason,
            },
        )

    def complete(self, reference: str) -> Booking:
        """Close a confirmed booking after the stay.

        Args:
            reference: Booking reference

        Returns:
            The completed booking

        Raises:
            BookingNotFoundError: Unknown reference
            InvalidTransitionError: The booking is not confirmed
        """
        return self._operator_transition(reference, BookingStatus.COMPLETED, {})

    def mark_no_show(self, reference: str) -> Booking:
        """Record that the guest of a confirmed booking never arrived.

        Args:
            reference: Booking reference

        Returns:
            The booking in no_show status

        Raises:
            BookingNotFoundError: Unknown reference
            InvalidTransitionError: The booking is not confirmed
        """
        return self._operator_transition(reference, BookingStatus.NO_SHOW, {})

    # Guest conversion

    def convert_guest_to_user(self, session_id: str, user_id: str) -> list[Booking]:
        """Hand every booking of a guest session to a registered user.

        The session flag and all owner rewrites commit in one transaction. The
        session's booking_count guards against a booking placed after the
        bookings were listed.

        Returns:
            The converted bookings

        Raises:
            GuestSessionNotFoundError: Unknown session
            ValidationError: More bookings than one transaction can carry
            ConflictError: Already converted to another user, or a
                concurrent booking changed the session
        """
        with unexpected_errors(logger, "convert_guest_to_user", session_id=session_id):
            session = self.sessions.get_session(session_id)
            if session.converted_to_user:
                if session.user_id == user_id:
                    return []
                raise ConflictError(
                    ErrorCode.CONCURRENT_UPDATE, details={"session_id": session_id}
                )

            bookings = self.list_session_bookings(session_id)
            if len(bookings) > MAX_CONVERTED_BOOKINGS:
                raise ValidationError(
                    ErrorCode.TOO_MANY_BOOKINGS,
                    details={
                        "bookings": str(len(bookings)),
                        "maximum": str(MAX_CONVERTED_BOOKINGS),
                    },
                )
            if len(bookings) != session.booking_count:
                raise ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"session_id": session_id})

            now = self._clock()
            new_owner = UserOwner(user_id=user_id)
            ops = [self.sessions.conversion_op(session_id, user_id, session.booking_count, now)]
            for booking in bookings:
                ops.append(
                    self.db.update_op(
                        BOOKINGS_TABLE,
                        key={"booking_id": booking.booking_id},
                        update_expression=(
                            "SET #owner = :owner, user_id = :uid, updated_at = :now "
                            "REMOVE guest_session_id"
                        ),
                        expression_attribute_names={"#owner": "owner"},
                        expression_attribute_values={
                            ":owner": new_owner,
                            ":uid": user_id,
                            ":now": now,
                            ":sid": session_id,
                        },
                        condition_expression="guest_session_id = :sid",
                    )
                )

            if not self.db.transact_write(ops):
                raise ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"session_id": session_id})

        logger.info(
            "Converted guest session %s to user %s (%d bookings)",
            session_id,
            user_id,
            len(bookings),
        )
        return [
            b.model_copy(update={"owner": new_owner, "updated_at": now}) for b in bookings
        ]

