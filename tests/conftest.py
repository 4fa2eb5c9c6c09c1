"""Pytest configuration and fixtures for Staybroker tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto
- Service instances wired to a controllable clock
- Sample input data (markup rules, bookings, card details)
"""

import datetime as dt
import os
from decimal import Decimal
from typing import Any, Generator

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-staybroker")
os.environ.setdefault("PAYMENT_GATEWAY", "mock")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from staybroker.services.booking_service import BookingService  # noqa: E402
from staybroker.services.dynamodb import DynamoDBService, reset_dynamodb_service  # noqa: E402
from staybroker.services.guest_session_service import GuestSessionService  # noqa: E402
from staybroker.services.markup_resolver import MarkupResolver, reset_markup_resolver  # noqa: E402
from staybroker.services.markup_rule_store import (  # noqa: E402
    MarkupRuleStore,
    reset_rule_change_listeners,
)
from staybroker.services.payment_gateway import MockGateway  # noqa: E402
from staybroker.services.payment_service import PaymentService  # noqa: E402
from staybroker.services.pricing_markup_service import PricingMarkupService  # noqa: E402
from staybroker.services.ssm_service import reset_ssm_service  # noqa: E402

TABLE_PREFIX = "test-staybroker"
NOW = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.timezone.utc)
TODAY = NOW.date()


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: dt.datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + dt.timedelta(**kwargs)


# === Singleton Resets ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset module-level singletons before and after each test.

    Tests using mock_aws get fresh boto3 clients inside the mock context
    rather than reusing ones from a previous test.
    """
    reset_dynamodb_service()
    reset_ssm_service()
    reset_markup_resolver()
    reset_rule_change_listeners()
    yield
    reset_dynamodb_service()
    reset_ssm_service()
    reset_markup_resolver()
    reset_rule_change_listeners()


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"
    os.environ["DYNAMODB_TABLE_PREFIX"] = TABLE_PREFIX


# === DynamoDB Fixtures ===


def _gsi(attribute: str) -> dict[str, Any]:
    return {
        "IndexName": f"{attribute}-index",
        "KeySchema": [{"AttributeName": attribute, "KeyType": "HASH"}],
        "Projection": {"ProjectionType": "ALL"},
    }


TABLES: list[dict[str, Any]] = [
    {
        "TableName": f"{TABLE_PREFIX}-pricing-markups",
        "KeySchema": [{"AttributeName": "rule_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "rule_id", "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-pricing-markup-default",
        "KeySchema": [{"AttributeName": "scope", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "scope", "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-bookings",
        "KeySchema": [{"AttributeName": "booking_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "booking_id", "AttributeType": "S"},
            {"AttributeName": "user_id", "AttributeType": "S"},
            {"AttributeName": "guest_session_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [_gsi("user_id"), _gsi("guest_session_id")],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-booking-references",
        "KeySchema": [{"AttributeName": "booking_reference", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "booking_reference", "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-payment-transactions",
        "KeySchema": [{"AttributeName": "transaction_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "transaction_id", "AttributeType": "S"},
            {"AttributeName": "booking_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [_gsi("booking_id")],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-guest-sessions",
        "KeySchema": [{"AttributeName": "session_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "session_id", "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    },
]


@pytest.fixture
def dynamodb_tables(aws_credentials: None) -> Generator[None, None, None]:
    """Create all Staybroker tables inside a moto mock."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        for table_config in TABLES:
            client.create_table(**table_config)
        yield


@pytest.fixture
def db(dynamodb_tables: None) -> DynamoDBService:
    return DynamoDBService()


# === Service Fixtures ===


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def rule_store(db: DynamoDBService, clock: FrozenClock) -> MarkupRuleStore:
    return MarkupRuleStore(db, clock=clock)


@pytest.fixture
def resolver(rule_store: MarkupRuleStore) -> MarkupResolver:
    return MarkupResolver(rule_store)


@pytest.fixture
def pricing_service(resolver: MarkupResolver) -> PricingMarkupService:
    return PricingMarkupService(resolver)


@pytest.fixture
def session_service(db: DynamoDBService, clock: FrozenClock) -> GuestSessionService:
    return GuestSessionService(db, clock=clock)


@pytest.fixture
def booking_service(
    db: DynamoDBService,
    pricing_service: PricingMarkupService,
    session_service: GuestSessionService,
    clock: FrozenClock,
) -> BookingService:
    return BookingService(db, pricing=pricing_service, sessions=session_service, clock=clock)


@pytest.fixture
def gateway() -> MockGateway:
    return MockGateway()


@pytest.fixture
def payment_service(
    db: DynamoDBService,
    booking_service: BookingService,
    gateway: MockGateway,
    clock: FrozenClock,
) -> PaymentService:
    return PaymentService(db, bookings=booking_service, gateway=gateway, clock=clock)


# === Sample Data Fixtures ===


@pytest.fixture
def percentage_rule_data() -> dict[str, Any]:
    return {
        "name": "Hotelbeds standard",
        "markup_type": "percentage",
        "percentage": Decimal("15"),
        "provider": "hotelbeds",
        "priority": 10,
    }


@pytest.fixture
def booking_data() -> dict[str, Any]:
    """A two-night hotel stay two weeks out."""
    check_in = TODAY + dt.timedelta(days=14)
    return {
        "provider": "hotelbeds",
        "listing": {
            "code": "HB-1234",
            "name": "Hotel Miramar",
            "property_type": "hotel",
            "destination_code": "PMI",
            "city": "Palma",
            "country": "ES",
        },
        "check_in_date": check_in,
        "check_out_date": check_in + dt.timedelta(days=2),
        "total_adults": 2,
        "base_price": Decimal("200.00"),
        "currency": "EUR",
        "holder": {
            "first_name": "Ana",
            "last_name": "Garcia",
            "email": "ana@example.com",
            "phone": "+34600111222",
        },
    }


@pytest.fixture
def payment_details() -> dict[str, Any]:
    return {
        "card_number": "4242 4242 4242 4242",
        "card_holder_name": "Ana Garcia",
        "card_expiry_month": "12",
        "card_expiry_year": "2030",
        "card_cvv": "123",
        "billing": {"email": "ana@example.com", "country": "ES"},
    }
