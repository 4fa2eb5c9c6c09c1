"""Tests for the DynamoDB wrapper and item conversion."""

import datetime as dt
from decimal import Decimal
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from staybroker.models.booking import GuestOwner
from staybroker.models.enums import BookingStatus
from staybroker.services.dynamodb import DynamoDBService, serialize, to_item

SESSIONS_TABLE = "guest-sessions"


class TestItemConversion:
    def test_to_item(self) -> None:
        """Enums, dates, numbers and nested models get their stored form; None is dropped."""
        item = to_item(
            {
                "status": BookingStatus.CONFIRMED,
                "check_in": dt.date(2026, 3, 15),
                "nights": 2,
                "rate": 0.5,
                "paid": False,
                "total": Decimal("230.00"),
                "owner": GuestOwner(session_id="guest_abc"),
                "user_id": None,
            }
        )

        assert item == {
            "status": "confirmed",
            "check_in": "2026-03-15",
            "nights": Decimal("2"),
            "rate": Decimal("0.5"),
            "paid": False,
            "total": Decimal("230.00"),
            "owner": {"kind": "guest", "session_id": "guest_abc"},
        }

    def test_serialize_for_client_calls(self) -> None:
        """Expression values become low-level AttributeValues."""
        assert serialize({":status": BookingStatus.PENDING, ":count": 3}) == {
            ":status": {"S": "pending"},
            ":count": {"N": "3"},
        }


class TestWrites:
    def test_table_prefix(self, db: DynamoDBService) -> None:
        """Table names carry the environment prefix."""
        assert db._table_name(SESSIONS_TABLE) == "test-staybroker-guest-sessions"

    def test_failed_condition_is_reported(self, db: DynamoDBService) -> None:
        """A failed condition is a return value, not an exception."""
        item = {"session_id": "s1", "created_at": "2026-03-01T12:00:00+00:00"}
        condition = "attribute_not_exists(session_id)"

        assert db.put_item(SESSIONS_TABLE, item, condition_expression=condition)
        assert not db.put_item(SESSIONS_TABLE, item, condition_expression=condition)
        assert (
            db.update_item(
                SESSIONS_TABLE,
                {"session_id": "missing"},
                "SET search_count = :one",
                {":one": 1},
                condition_expression="attribute_exists(session_id)",
            )
            is None
        )

    def test_transaction_is_all_or_nothing(self, db: DynamoDBService) -> None:
        """One failed condition cancels every write in the transaction."""
        db.put_item(SESSIONS_TABLE, {"session_id": "s1", "booking_count": 1})

        committed = db.transact_write(
            [
                db.put_op(SESSIONS_TABLE, {"session_id": "s2", "booking_count": 0}),
                db.update_op(
                    SESSIONS_TABLE,
                    {"session_id": "s1"},
                    "SET booking_count = booking_count + :one",
                    {":one": 1, ":expected": 5},
                    condition_expression="booking_count = :expected",
                ),
            ]
        )

        assert not committed
        assert db.get_item(SESSIONS_TABLE, {"session_id": "s2"}) is None
        assert db.get_item(SESSIONS_TABLE, {"session_id": "s1"})["booking_count"] == 1

    def test_other_client_errors_propagate(self, db: DynamoDBService) -> None:
        """Throttling and other client errors are raised to the caller."""
        error = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException"}}, "TransactWriteItems"
        )

        with patch.object(db._client, "transact_write_items", side_effect=error):
            with pytest.raises(ClientError):
                db.transact_write([db.put_op(SESSIONS_TABLE, {"session_id": "s3"})])
