"""Guest session storage for unauthenticated visitors."""

import datetime as dt
import secrets
from typing import Any, Callable

from ..models.booking import HolderContact
from ..models.errors import (
    ConflictError,
    ErrorCode,
    GuestSessionNotFoundError,
    ValidationError,
)
from ..models.guest_session import GuestSession
from ..utils.logging import get_logger
from .dynamodb import DynamoDBService, get_dynamodb_service, to_item

logger = get_logger(__name__)

SESSIONS_TABLE = "guest-sessions"
DEFAULT_TTL_DAYS = 30


def _generate_session_id() -> str:
    return f"guest_{secrets.token_hex(16)}"


class GuestSessionService:
    """Create, read and update guest sessions."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))

    def create_session(self, ttl_days: int = DEFAULT_TTL_DAYS) -> GuestSession:
        """Start a new guest session.

        Args:
            ttl_days: Days until the session expires

        Returns:
            The stored session

        Raises:
            ConflictError: The generated session ID already exists
        """
        now = self._clock()
        session = GuestSession(
            session_id=_generate_session_id(),
            first_activity_at=now,
            last_activity_at=now,
            expires_at=now + dt.timedelta(days=ttl_days),
            created_at=now,
        )
        created = self.db.put_item(
            SESSIONS_TABLE,
            to_item(session),
            condition_expression="attribute_not_exists(session_id)",
        )
        if not created:
            raise ConflictError(
                ErrorCode.CONCURRENT_UPDATE, details={"session_id": session.session_id}
            )
        logger.info("Created guest session %s", session.session_id)
        return session

    def get_session(self, session_id: str) -> GuestSession:
        """Get a session by ID.

        Raises:
            GuestSessionNotFoundError: Unknown session
        """
        item = self.db.get_item(SESSIONS_TABLE, {"session_id": session_id})
        if not item:
            raise GuestSessionNotFoundError(details={"session_id": session_id})
        return GuestSession.model_validate(item)

    def get_active_session(self, session_id: str) -> GuestSession:
        """Get a session that can still place bookings.

        Raises:
            GuestSessionNotFoundError: Unknown session
            ValidationError: Session expired or already converted
        """
        session = self.get_session(session_id)
        if session.is_expired(self._clock()):
            raise ValidationError(
                ErrorCode.GUEST_SESSION_EXPIRED, details={"session_id": session_id}
            )
        if session.converted_to_user:
            raise ValidationError(
                ErrorCode.INVALID_INPUT,
                details={"session_id": "session already converted to a user"},
            )
        return session

    def _update(
        self,
        session_id: str,
        update_expression: str,
        values: dict[str, Any],
    ) -> GuestSession:
        attrs = self.db.update_item(
            SESSIONS_TABLE,
            key={"session_id": session_id},
            update_expression=update_expression,
            expression_attribute_values=values,
            condition_expression="attribute_exists(session_id)",
        )
        if attrs is None:
            raise GuestSessionNotFoundError(details={"session_id": session_id})
        return GuestSession.model_validate(attrs)

    def update_contact(
        self,
        session_id: str,
        *,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
    ) -> GuestSession:
        """Store contact details the guest entered."""
        fields = {
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
            "phone": phone,
        }
        now = self._clock().isoformat()
        sets = ["last_activity_at = :now"]
        values: dict[str, Any] = {":now": now}
        for name, value in fields.items():
            if value is not None:
                sets.append(f"{name} = :{name}")
                values[f":{name}"] = value
        return self._update(session_id, "SET " + ", ".join(sets), values)

    def extend_expiry(self, session_id: str, days: int = DEFAULT_TTL_DAYS) -> GuestSession:
        """Push the expiry to ``days`` from now.

        Args:
            session_id: Guest session ID
            days: New lifetime counted from now

        Returns:
            The updated session

        Raises:
            GuestSessionNotFoundError: Unknown session
        """
        expires_at = self._clock() + dt.timedelta(days=days)
        return self._update(
            session_id,
            "SET expires_at = :exp",
            {":exp": expires_at.isoformat()},
        )

    def increment_search_count(self, session_id: str) -> GuestSession:
        now = self._clock().isoformat()
        return self._update(
            session_id,
            "SET search_count = if_not_exists(search_count, :zero) + :one, "
            "last_activity_at = :now, "
            "first_activity_at = if_not_exists(first_activity_at, :now)",
            {":zero": 0, ":one": 1, ":now": now},
        )

    # Transaction items used by the booking lifecycle

    def booking_placed_op(
        self, session_id: str, holder: HolderContact, now: dt.datetime
    ) -> dict[str, Any]:
        """Count a booking and record the holder's contact on the session.

        Conditioned on the session being live and unconverted.
        """
        return self.db.update_op(
            SESSIONS_TABLE,
            key={"session_id": session_id},
            update_expression=(
                "SET booking_count = if_not_exists(booking_count, :zero) + :one, "
                "email = :email, first_name = :first, last_name = :last, "
                "phone = :phone, last_activity_at = :now"
            ),
            expression_attribute_values={
                ":zero": 0,
                ":one": 1,
                ":email": holder.email,
                ":first": holder.first_name,
                ":last": holder.last_name,
                ":phone": holder.phone,
                ":now": now,
                ":true": True,
            },
            condition_expression=(
                "attribute_exists(session_id) "
                "AND (attribute_not_exists(expires_at) OR expires_at > :now) "
                "AND (attribute_not_exists(converted_to_user) OR converted_to_user <> :true)"
            ),
        )

    def conversion_op(
        self,
        session_id: str,
        user_id: str,
        expected_booking_count: int,
        now: dt.datetime,
    ) -> dict[str, Any]:
        """Mark the session converted, provided no booking arrived meanwhile."""
        count_condition = "booking_count = :count"
        if expected_booking_count == 0:
            count_condition = f"(attribute_not_exists(booking_count) OR {count_condition})"
        return self.db.update_op(
            SESSIONS_TABLE,
            key={"session_id": session_id},
            update_expression=(
                "SET converted_to_user = :true, user_id = :uid, converted_at = :now"
            ),
            expression_attribute_values={
                ":true": True,
                ":uid": user_id,
                ":now": now,
                ":count": expected_booking_count,
            },
            condition_expression=(
                "(attribute_not_exists(converted_to_user) OR converted_to_user <> :true) "
                f"AND {count_condition}"
            ),
        )
