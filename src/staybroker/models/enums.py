"""Enumeration types for Staybroker data models."""

from enum import Enum


class Provider(str, Enum):
    """Upstream inventory provider a booking or quote comes from."""

    HOTELBEDS = "hotelbeds"
    OWNERREZ = "ownerrez"


class RuleProvider(str, Enum):
    """Provider scope of a markup rule."""

    HOTELBEDS = "hotelbeds"
    OWNERREZ = "ownerrez"
    ALL = "all"


class MarkupType(str, Enum):
    """How a markup rule computes its amount."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"
    TIERED = "tiered"


class RuleState(str, Enum):
    """Lifecycle state of a markup rule.

    Only ACTIVE rules take part in resolution. RETIRED is the soft delete.
    """

    DRAFT = "draft"
    ACTIVE = "active"
    RETIRED = "retired"


class BookingStatus(str, Enum):
    """Status of a booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    """Payment status for a booking."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class TransactionType(str, Enum):
    """Kind of payment transaction."""

    PAYMENT = "payment"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"
    AUTHORIZATION = "authorization"
    CAPTURE = "capture"
    VOID = "void"


class TransactionStatus(str, Enum):
    """Status of a payment transaction."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    VOIDED = "voided"
    DECLINED = "declined"
    ERROR = "error"


class PaymentMethod(str, Enum):
    """Supported payment methods."""

    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"


class GatewayName(str, Enum):
    """Payment gateways the manager can talk to."""

    MOCK = "mock"
    STRIPE = "stripe"


class ActorRole(str, Enum):
    """Who performed a booking mutation."""

    GUEST = "guest"
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"
