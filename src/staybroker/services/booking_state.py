"""Booking state machine."""

from ..models.enums import BookingStatus
from ..models.errors import AlreadyCancelledError, InvalidTransitionError

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.REJECTED}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
    BookingStatus.REJECTED: frozenset(),
}


def sources_for(target: BookingStatus) -> list[BookingStatus]:
    """Statuses from which target is reachable, for conditional writes."""
    return [s for s, allowed in BOOKING_TRANSITIONS.items() if target in allowed]


def assert_booking_transition(current: BookingStatus, target: BookingStatus) -> None:
    if current == BookingStatus.CANCELLED and target == BookingStatus.CANCELLED:
        raise AlreadyCancelledError()
    if target not in BOOKING_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(
            details={"from": current.value, "to": target.value}
        )
