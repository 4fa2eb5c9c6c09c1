"""Stripe implementation of the card gateway.

Uses the StripeClient pattern with the secret key from SSM Parameter Store.
Requests are bounded by the configured timeout and never retried by the
client library: a payment attempt is at-most-once.
"""

import os
from decimal import Decimal

import stripe
from stripe import StripeClient

from ..models.enums import GatewayName
from ..models.errors import ErrorCode, ExternalError, GatewayTimeoutError
from ..models.payment import CardData, ChargeRequest, GatewayResult, RefundRequest
from ..utils.logging import get_logger
from .ssm_service import SSMServiceError, get_ssm_service

logger = get_logger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount to the smallest currency unit (cents)."""
    return int((amount * 100).to_integral_value())


class StripeGateway:
    """Charges and refunds through Stripe PaymentIntents."""

    name = GatewayName.STRIPE

    def __init__(
        self,
        timeout_seconds: float,
        environment: str | None = None,
        client: StripeClient | None = None,
    ) -> None:
        self._environment = environment or os.environ.get("ENVIRONMENT", "dev")
        self._timeout = timeout_seconds
        self._client = client

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            ExternalError: If the secret key cannot be retrieved
        """
        if self._client is None:
            try:
                secret_key = get_ssm_service().get_secret("stripe/secret_key", self._environment)
            except SSMServiceError as e:
                logger.error("Stripe credentials unavailable: %s", e)
                raise ExternalError(
                    ErrorCode.GATEWAY_UNAVAILABLE, details={"gateway": self.name.value}
                ) from e
            self._client = StripeClient(
                secret_key,
                http_client=stripe.RequestsClient(timeout=self._timeout),
                max_network_retries=0,
            )
            logger.info("Stripe client initialized for environment: %s", self._environment)
        return self._client

    def _error_for(self, error: stripe.StripeError, operation: str) -> ExternalError:
        error_code = getattr(error, "code", None)
        logger.error(
            "Stripe %s failed: %s (code: %s)", operation, error.user_message or error, error_code
        )
        if isinstance(error, stripe.APIConnectionError):
            return GatewayTimeoutError(details={"gateway": self.name.value})
        return ExternalError(
            ErrorCode.GATEWAY_UNAVAILABLE,
            details={"gateway": self.name.value, "stripe_error_code": str(error_code)},
        )

    def charge(self, request: ChargeRequest, card: CardData) -> GatewayResult:
        client = self._get_client()
        params: dict = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "description": request.description,
            "confirm": True,
            "payment_method_data": {
                "type": "card",
                "card": {
                    "number": card.number.get_secret_value(),
                    "exp_month": int(card.expiry_month),
                    "exp_year": int(card.expiry_year),
                    "cvc": card.cvv.get_secret_value(),
                },
                "billing_details": {"name": card.holder_name},
            },
            "metadata": {
                "transaction_id": request.transaction_id,
                "booking_reference": request.booking_reference,
            },
        }
        if request.billing_email:
            params["payment_method_data"]["billing_details"]["email"] = request.billing_email

        try:
            intent = client.payment_intents.create(
                params=params,
                options={"idempotency_key": f"charge_{request.transaction_id}"},
            )
        except stripe.CardError as e:
            logger.info("Stripe declined %s: %s", request.transaction_id, e.code)
            return GatewayResult(
                success=False,
                declined=True,
                response_code=e.code,
                message=e.user_message,
            )
        except stripe.StripeError as e:
            raise self._error_for(e, "charge") from e

        if intent.status != "succeeded":
            return GatewayResult(
                success=False,
                gateway_transaction_id=intent.id,
                response_code=intent.status,
                message="Payment was not completed",
            )
        return GatewayResult(
            success=True,
            gateway_transaction_id=intent.id,
            response_code=intent.status,
            message="Payment successful",
        )

    def refund(self, request: RefundRequest) -> GatewayResult:
        client = self._get_client()
        params: dict = {
            "payment_intent": request.parent_gateway_transaction_id,
            "amount": to_minor_units(request.amount),
            "metadata": {"transaction_id": request.transaction_id},
        }
        if request.reason:
            params["metadata"]["reason"] = request.reason

        try:
            refund = client.refunds.create(
                params=params,
                options={"idempotency_key": f"refund_{request.transaction_id}"},
            )
        except stripe.StripeError as e:
            raise self._error_for(e, "refund") from e

        succeeded = refund.status in ("succeeded", "pending")
        return GatewayResult(
            success=succeeded,
            gateway_transaction_id=refund.id,
            response_code=refund.status,
            message="Refund issued" if succeeded else "Refund was not issued",
        )
