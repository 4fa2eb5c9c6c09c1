"""Pydantic models for Staybroker data entities."""

from .booking import (
    AdminIdentity,
    Booking,
    BookingCreate,
    BookingOwner,
    BookingSummary,
    CancellationQuote,
    GuestIdentity,
    GuestOwner,
    HolderContact,
    PropertySnapshot,
    Requester,
    UserIdentity,
    UserOwner,
)
from .enums import (
    ActorRole,
    BookingStatus,
    GatewayName,
    MarkupType,
    PaymentMethod,
    PaymentStatus,
    Provider,
    RuleProvider,
    RuleState,
    TransactionStatus,
    TransactionType,
)
from .errors import (
    ERROR_MESSAGES,
    AlreadyCancelledError,
    AlreadyPaidError,
    BookingNotFoundError,
    BrokerError,
    ConflictError,
    ConsistencyViolation,
    DuplicateDefaultError,
    ErrorCode,
    ErrorResponse,
    ExternalError,
    GatewayTimeoutError,
    GuestSessionNotFoundError,
    InvalidTransitionError,
    NotFoundError,
    NotRefundableError,
    RuleNotFoundError,
    TransactionNotFoundError,
    ValidationError,
    parse_input,
)
from .guest_session import GuestSession
from .markup import (
    AppliedRule,
    MarkupPreview,
    MarkupResult,
    MarkupTier,
    PricingContext,
    PricingMarkupRule,
    RuleCreate,
    RuleDefinition,
    RuleUpdate,
)
from .payment import (
    BillingDetails,
    CardData,
    ChargeRequest,
    GatewayResult,
    PaymentDetails,
    PaymentOutcome,
    PaymentStatusView,
    PaymentTransaction,
    RefundRequest,
    detect_card_brand,
)

__all__ = [
    # Enums
    "ActorRole",
    "BookingStatus",
    "GatewayName",
    "MarkupType",
    "PaymentMethod",
    "PaymentStatus",
    "Provider",
    "RuleProvider",
    "RuleState",
    "TransactionStatus",
    "TransactionType",
    # Markup
    "AppliedRule",
    "MarkupPreview",
    "MarkupResult",
    "MarkupTier",
    "PricingContext",
    "PricingMarkupRule",
    "RuleCreate",
    "RuleDefinition",
    "RuleUpdate",
    # Booking
    "AdminIdentity",
    "Booking",
    "BookingCreate",
    "BookingOwner",
    "BookingSummary",
    "CancellationQuote",
    "GuestIdentity",
    "GuestOwner",
    "HolderContact",
    "PropertySnapshot",
    "Requester",
    "UserIdentity",
    "UserOwner",
    # Payment
    "BillingDetails",
    "CardData",
    "ChargeRequest",
    "GatewayResult",
    "PaymentDetails",
    "PaymentOutcome",
    "PaymentStatusView",
    "PaymentTransaction",
    "RefundRequest",
    "detect_card_brand",
    # Guest session
    "GuestSession",
    # Errors
    "ERROR_MESSAGES",
    "AlreadyCancelledError",
    "AlreadyPaidError",
    "BookingNotFoundError",
    "BrokerError",
    "ConflictError",
    "ConsistencyViolation",
    "DuplicateDefaultError",
    "ErrorCode",
    "ErrorResponse",
    "ExternalError",
    "GatewayTimeoutError",
    "GuestSessionNotFoundError",
    "InvalidTransitionError",
    "NotFoundError",
    "NotRefundableError",
    "RuleNotFoundError",
    "TransactionNotFoundError",
    "ValidationError",
    "parse_input",
]
