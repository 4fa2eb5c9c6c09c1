"""Guest session model for unauthenticated visitors."""

import datetime as dt

from pydantic import BaseModel, Field


class GuestSession(BaseModel):
    """Tracking identity of a visitor who has not registered.

    Convertible to a registered user; on conversion every booking made under
    the session is handed over to that user.
    """

    session_id: str = Field(..., description="Unique session ID")
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    search_count: int = Field(default=0, ge=0)
    booking_count: int = Field(default=0, ge=0)
    first_activity_at: dt.datetime | None = None
    last_activity_at: dt.datetime | None = None
    converted_to_user: bool = False
    user_id: str | None = None
    converted_at: dt.datetime | None = None
    expires_at: dt.datetime | None = None
    created_at: dt.datetime

    def is_expired(self, now: dt.datetime) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at

    @property
    def full_name(self) -> str | None:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name or self.last_name

    @property
    def conversion_rate(self) -> float:
        """Bookings per search, as a percentage."""
        if self.search_count == 0:
            return 0.0
        return self.booking_count / self.search_count * 100
