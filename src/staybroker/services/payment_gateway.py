"""Card gateway abstraction.

The gateway call is the only I/O boundary of a payment. Implementations must
bound every call by a timeout and report it by raising GatewayTimeoutError;
any other transport or provider failure raises ExternalError. A decline is
not an exception: it comes back as a GatewayResult with success=False.
"""

import os
import uuid
from typing import Literal, Protocol

from ..models.enums import GatewayName
from ..models.errors import ErrorCode, ExternalError, GatewayTimeoutError
from ..models.payment import CardData, ChargeRequest, GatewayResult, RefundRequest
from ..utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def gateway_timeout_seconds() -> float:
    return float(os.getenv("PAYMENT_GATEWAY_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))


class PaymentGateway(Protocol):
    """What the payment manager needs from a card processor."""

    name: GatewayName

    def charge(self, request: ChargeRequest, card: CardData) -> GatewayResult: ...

    def refund(self, request: RefundRequest) -> GatewayResult: ...


MockOutcome = Literal["approve", "decline", "timeout", "error"]


class MockGateway:
    """In-process gateway for development and tests.

    Approves everything by default; ``outcome`` forces a decline, a timeout
    or an unavailable gateway for every call.
    """

    name = GatewayName.MOCK

    def __init__(self, outcome: MockOutcome = "approve") -> None:
        self.outcome = outcome
        self.charges: list[ChargeRequest] = []
        self.refunds: list[RefundRequest] = []

    def _respond(self, prefix: str) -> GatewayResult:
        if self.outcome == "timeout":
            raise GatewayTimeoutError(details={"gateway": self.name.value})
        if self.outcome == "error":
            raise ExternalError(ErrorCode.GATEWAY_UNAVAILABLE, details={"gateway": self.name.value})
        if self.outcome == "decline":
            return GatewayResult(
                success=False,
                declined=True,
                response_code="card_declined",
                message="The card was declined",
            )
        return GatewayResult(
            success=True,
            gateway_transaction_id=f"{prefix}_{uuid.uuid4().hex[:16]}",
            response_code="approved",
            message="Approved",
        )

    def charge(self, request: ChargeRequest, card: CardData) -> GatewayResult:
        self.charges.append(request)
        logger.info(
            "Mock charge %s for %s %s (%s ending %s)",
            request.transaction_id,
            request.amount,
            request.currency,
            card.brand,
            card.last_four,
        )
        return self._respond("mock_ch")

    def refund(self, request: RefundRequest) -> GatewayResult:
        self.refunds.append(request)
        logger.info("Mock refund %s for %s", request.transaction_id, request.amount)
        return self._respond("mock_re")


def get_payment_gateway(name: str | None = None) -> PaymentGateway:
    """Build the gateway selected by PAYMENT_GATEWAY (mock by default)."""
    selected = GatewayName(name or os.getenv("PAYMENT_GATEWAY", GatewayName.MOCK.value))
    if selected == GatewayName.STRIPE:
        from .stripe_gateway import StripeGateway

        return StripeGateway(timeout_seconds=gateway_timeout_seconds())
    return MockGateway()
