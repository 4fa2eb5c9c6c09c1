"""Services for markup pricing and the booking/payment lifecycle."""

from .booking_service import BookingService
from .cancellation_policy_service import CancellationPolicyService
from .dynamodb import DynamoDBService, get_dynamodb_service
from .guest_session_service import GuestSessionService
from .markup_cache import ActiveRuleCache
from .markup_resolver import MarkupResolver, get_markup_resolver
from .markup_rule_store import MarkupRuleStore
from .payment_gateway import MockGateway, PaymentGateway, get_payment_gateway
from .payment_service import PaymentService
from .pricing_markup_service import PricingMarkupService
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .stripe_gateway import StripeGateway

__all__ = [
    "DynamoDBService",
    "get_dynamodb_service",
    "ActiveRuleCache",
    "BookingService",
    "CancellationPolicyService",
    "GuestSessionService",
    "MarkupResolver",
    "get_markup_resolver",
    "MarkupRuleStore",
    "MockGateway",
    "PaymentGateway",
    "PaymentService",
    "PricingMarkupService",
    "SSMService",
    "SSMServiceError",
    "get_ssm_service",
    "StripeGateway",
    "get_payment_gateway",
]
