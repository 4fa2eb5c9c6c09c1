"""Payment transaction manager.

Flow of a payment:
1. A PaymentTransaction is written pending with masked card metadata.
2. The gateway is called once with the raw card data.
3. On success the transaction (pending -> success) and the booking
   (pending -> paid/confirmed) are committed in one DynamoDB transaction.
4. On a decline, timeout or gateway error only the transaction is updated
   and the booking stays payable; a retry uses a new transaction_id.

Refunds follow the same shape with a child transaction pointing at the
original payment through parent_transaction_id.
"""

import datetime as dt
from decimal import Decimal
from typing import Any, Callable

from ..models.booking import Booking, GuestIdentity, Requester, UserIdentity
from ..models.enums import (
    BookingStatus,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)
from ..models.errors import (
    AlreadyPaidError,
    BrokerError,
    ConflictError,
    ConsistencyViolation,
    ErrorCode,
    ExternalError,
    GatewayTimeoutError,
    InvalidTransitionError,
    NotRefundableError,
    TransactionNotFoundError,
    ValidationError,
    parse_input,
    unexpected_errors,
)
from ..models.payment import (
    CardData,
    ChargeRequest,
    GatewayResult,
    PaymentDetails,
    PaymentOutcome,
    PaymentStatusView,
    PaymentTransaction,
    RefundRequest,
)
from ..utils.logging import get_logger, log_payment_operation
from ..utils.money import ZERO, round_money
from ..utils.references import generate_reference, generate_transaction_id
from .booking_service import BOOKINGS_TABLE, BookingService
from .dynamodb import DynamoDBService, get_dynamodb_service, to_item
from .payment_gateway import PaymentGateway, get_payment_gateway

logger = get_logger(__name__)

TRANSACTIONS_TABLE = "payment-transactions"

PAYMENT_FAILED_MESSAGE = "Payment failed"
REFUND_FAILED_MESSAGE = "Refund failed"

# Payment statuses a booking may carry once its payment committed
_SETTLED_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}
)


class PaymentService:
    """Creates payment transactions and reconciles them with bookings."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        bookings: BookingService | None = None,
        gateway: PaymentGateway | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))
        self.bookings = bookings or BookingService(self.db, clock=self._clock)
        self.gateway = gateway or get_payment_gateway()

    # Reads

    def get_transaction(self, transaction_id: str) -> PaymentTransaction:
        """Get a transaction by ID.

        Raises:
            TransactionNotFoundError: Unknown transaction
        """
        item = self.db.get_item(TRANSACTIONS_TABLE, {"transaction_id": transaction_id})
        if not item:
            raise TransactionNotFoundError(details={"transaction_id": transaction_id})
        return PaymentTransaction.model_validate(item)

    def get_payment_status(self, transaction_id: str) -> PaymentStatusView:
        """Public status view of a transaction.

        Args:
            transaction_id: The transaction to look up

        Returns:
            Status, amount and processing time, without card or gateway detail

        Raises:
            TransactionNotFoundError: Unknown transaction
        """
        txn = self.get_transaction(transaction_id)
        return PaymentStatusView(
            transaction_id=txn.transaction_id,
            status=txn.status,
            amount=txn.amount,
            currency=txn.currency,
            processed_at=txn.processed_at,
        )

    def list_transactions_for_booking(self, booking_id: str) -> list[PaymentTransaction]:
        """All transactions of a booking, oldest first."""
        items = self.db.query_by_gsi(
            TRANSACTIONS_TABLE, "booking_id-index", "booking_id", booking_id
        )
        txns = [PaymentTransaction.model_validate(i) for i in items]
        return sorted(txns, key=lambda t: t.created_at)

    def get_payment_history(self, user_id: str) -> list[PaymentTransaction]:
        """Transactions of every booking the user owns, newest first.

        Follows current booking ownership, so payments made before a guest
        session converted show up for the user.
        """
        history: list[PaymentTransaction] = []
        for booking in self.bookings.list_user_bookings(user_id):
            history.extend(self.list_transactions_for_booking(booking.booking_id))
        return sorted(history, key=lambda t: t.created_at, reverse=True)

    def verify_payment_consistency(self, transaction_id: str) -> None:
        """Check that a successful payment is reflected on its booking.

        Raises:
            ConsistencyViolation: Success transaction with an unpaid booking,
                or a paid booking pointing at a non-successful transaction
        """
        txn = self.get_transaction(transaction_id)
        if txn.transaction_type != TransactionType.PAYMENT:
            return
        item = self.db.get_item(BOOKINGS_TABLE, {"booking_id": txn.booking_id})
        if item is None:
            raise ConsistencyViolation(details={"transaction_id": transaction_id})
        booking = Booking.model_validate(item)

        settled = txn.status in (TransactionStatus.SUCCESS, TransactionStatus.REFUNDED)
        points_here = booking.payment_transaction_id == txn.transaction_id
        if settled and not (points_here and booking.payment_status in _SETTLED_PAYMENT_STATUSES):
            raise ConsistencyViolation(
                details={"transaction_id": transaction_id, "booking_id": booking.booking_id}
            )
        if points_here and not settled:
            raise ConsistencyViolation(
                details={"transaction_id": transaction_id, "booking_id": booking.booking_id}
            )

    # Payment

    def _load_payable_booking(
        self, reference: str, details: PaymentDetails, requester: Requester
    ) -> Booking:
        if isinstance(requester, GuestIdentity):
            # Guests prove ownership with the billing email
            requester = GuestIdentity(
                session_id=requester.session_id, email=details.billing.email
            )
        booking = self.bookings.get_booking_for_owner(reference, requester)
        if booking.is_paid:
            raise AlreadyPaidError(details={"booking_reference": reference})
        if (
            booking.booking_status != BookingStatus.PENDING
            or booking.payment_status not in (PaymentStatus.PENDING, PaymentStatus.FAILED)
        ):
            raise InvalidTransitionError(
                details={
                    "booking_reference": reference,
                    "booking_status": booking.booking_status.value,
                }
            )
        return booking

    def _call_gateway(
        self, txn: PaymentTransaction, call: Callable[[], GatewayResult]
    ) -> tuple[GatewayResult, TransactionStatus]:
        """Run one gateway call, mapping every failure to a terminal status."""
        try:
            result = call()
        except GatewayTimeoutError:
            logger.warning("Gateway timed out for %s", txn.transaction_id)
            return (
                GatewayResult(success=False, response_code="timeout", message="Gateway timed out"),
                TransactionStatus.FAILED,
            )
        except ExternalError as e:
            logger.error("Gateway unavailable for %s: %s", txn.transaction_id, e.code.value)
            return (
                GatewayResult(success=False, response_code=e.code.value, message="Gateway unavailable"),
                TransactionStatus.FAILED,
            )
        except Exception:
            logger.exception("Unexpected gateway error for %s", txn.transaction_id)
            return (
                GatewayResult(success=False, response_code="error", message="Unexpected gateway error"),
                TransactionStatus.ERROR,
            )
        if result.success:
            return result, TransactionStatus.SUCCESS
        return result, TransactionStatus.FAILED

    def _close_transaction(
        self,
        txn: PaymentTransaction,
        status: TransactionStatus,
        result: GatewayResult,
        note: str | None = None,
    ) -> None:
        """Move a transaction from pending/success to a terminal failure status."""
        attrs = self.db.update_item(
            TRANSACTIONS_TABLE,
            key={"transaction_id": txn.transaction_id},
            update_expression=(
                "SET #status = :status, gateway_transaction_id = :gid, "
                "gateway_response_code = :code, gateway_response_message = :msg, "
                "processed_at = :now, updated_at = :now"
            ),
            expression_attribute_names={"#status": "status"},
            expression_attribute_values={
                ":status": status,
                ":gid": result.gateway_transaction_id,
                ":code": result.response_code,
                ":msg": note or result.message,
                ":now": self._clock(),
                ":pending": TransactionStatus.PENDING,
            },
            condition_expression="#status = :pending",
        )
        if attrs is None:
            raise ConsistencyViolation(details={"transaction_id": txn.transaction_id})

    def _record_failure(
        self, txn: PaymentTransaction, status: TransactionStatus, result: GatewayResult
    ) -> None:
        """Close a failed attempt, flagging it for reconciliation if the write fails."""
        try:
            self._close_transaction(txn, status, result)
        except BrokerError:
            raise
        except Exception as e:
            logger.exception(
                "Could not record %s outcome of %s; transaction left pending, reconcile "
                "against gateway response %s",
                status.value,
                txn.transaction_id,
                result.response_code,
            )
            raise BrokerError(
                ErrorCode.INTERNAL_ERROR, details={"transaction_id": txn.transaction_id}
            ) from e

    def _create_pending(self, txn: PaymentTransaction) -> None:
        created = self.db.put_item(
            TRANSACTIONS_TABLE,
            to_item(txn),
            condition_expression="attribute_not_exists(transaction_id)",
        )
        if not created:
            raise ConflictError(
                ErrorCode.CONCURRENT_UPDATE, details={"transaction_id": txn.transaction_id}
            )

    def process_payment(
        self,
        reference: str,
        details: PaymentDetails | dict[str, Any],
        requester: UserIdentity | GuestIdentity,
    ) -> PaymentOutcome:
        """Charge the booking total and confirm the booking.

        Args:
            reference: Booking reference
            details: Card and billing details
            requester: Verified booking owner

        Returns:
            PaymentOutcome; success=False with a generic message when the
            gateway declined, timed out or failed

        Raises:
            ValidationError: Malformed payment details
            BookingNotFoundError: Unknown booking or not the requester's
            AlreadyPaidError: The booking is already paid
            InvalidTransitionError: The booking can no longer be paid
        """
        payment = parse_input(PaymentDetails, details)
        if isinstance(requester, UserIdentity) and payment.billing.email is None:
            payment = payment.model_copy(
                update={"billing": payment.billing.model_copy(update={"email": requester.email})}
            )
        with unexpected_errors(logger, "process_payment", booking_reference=reference):
            booking = self._load_payable_booking(reference, payment, requester)
            card: CardData = payment.card_data()

            now = self._clock()
            txn = PaymentTransaction(
                transaction_id=generate_transaction_id(),
                booking_id=booking.booking_id,
                booking_reference=booking.booking_reference,
                owner=booking.owner,
                gateway=self.gateway.name,
                amount=booking.total_price,
                currency=booking.currency,
                transaction_type=TransactionType.PAYMENT,
                payment_method=payment.payment_method,
                card_brand=card.brand,
                card_last_four=card.last_four,
                card_expiry_month=card.expiry_month,
                card_expiry_year=card.expiry_year,
                card_holder_name=card.holder_name,
                billing=payment.billing,
                status=TransactionStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            self._create_pending(txn)
            log_payment_operation(
                logger,
                "process_payment",
                transaction_id=txn.transaction_id,
                booking_reference=reference,
                amount=txn.amount,
                status=txn.status.value,
                card=f"{txn.card_brand} {txn.masked_card_number}",
            )

            request = ChargeRequest(
                transaction_id=txn.transaction_id,
                booking_reference=booking.booking_reference,
                amount=txn.amount,
                currency=txn.currency,
                description=(
                    f"{booking.property_name} {booking.check_in_date}-{booking.check_out_date}"
                ),
                billing_email=str(payment.billing.email) if payment.billing.email else None,
            )
            result, status = self._call_gateway(txn, lambda: self.gateway.charge(request, card))

            if status != TransactionStatus.SUCCESS:
                self._record_failure(txn, status, result)
                log_payment_operation(
                    logger,
                    "process_payment",
                    transaction_id=txn.transaction_id,
                    booking_reference=reference,
                    status=status.value,
                    error=result.message or PAYMENT_FAILED_MESSAGE,
                )
                return PaymentOutcome(
                    success=False,
                    transaction_id=txn.transaction_id,
                    booking_reference=reference,
                    status=status,
                    amount=txn.amount,
                    currency=txn.currency,
                    message=PAYMENT_FAILED_MESSAGE,
                )

            self._commit_payment(txn, booking, result)
            log_payment_operation(
                logger,
                "process_payment",
                transaction_id=txn.transaction_id,
                booking_reference=reference,
                amount=txn.amount,
                status=TransactionStatus.SUCCESS.value,
            )
            return PaymentOutcome(
                success=True,
                transaction_id=txn.transaction_id,
                booking_reference=reference,
                status=TransactionStatus.SUCCESS,
                amount=txn.amount,
                currency=txn.currency,
                message="Payment processed successfully",
            )

    def _commit_payment(
        self, txn: PaymentTransaction, booking: Booking, result: GatewayResult
    ) -> None:
        """Atomically mark the transaction successful and the booking paid."""
        now = self._clock()
        ops = [
            self.db.update_op(
                TRANSACTIONS_TABLE,
                key={"transaction_id": txn.transaction_id},
                update_expression=(
                    "SET #status = :success, gateway_transaction_id = :gid, "
                    "gateway_response_code = :code, gateway_response_message = :msg, "
                    "processed_at = :now, updated_at = :now"
                ),
                expression_attribute_names={"#status": "status"},
                expression_attribute_values={
                    ":success": TransactionStatus.SUCCESS,
                    ":pending": TransactionStatus.PENDING,
                    ":gid": result.gateway_transaction_id,
                    ":code": result.response_code,
                    ":msg": result.message or "Payment successful",
                    ":now": now,
                },
                condition_expression="#status = :pending",
            ),
            self.db.update_op(
                BOOKINGS_TABLE,
                key={"booking_id": booking.booking_id},
                update_expression=(
                    "SET payment_status = :paid, booking_status = :confirmed, "
                    "payment_transaction_id = :tid, paid_amount = :amount, "
                    "paid_at = :now, confirmed_at = :now, confirmation_code = :code, "
                    "updated_at = :now"
                ),
                expression_attribute_values={
                    ":paid": PaymentStatus.PAID,
                    ":confirmed": BookingStatus.CONFIRMED,
                    ":pending": BookingStatus.PENDING,
                    ":tid": txn.transaction_id,
                    ":amount": txn.amount,
                    ":now": now,
                    ":code": generate_reference("CNF", 10),
                },
                condition_expression="payment_status <> :paid AND booking_status = :pending",
            ),
        ]

        try:
            committed = self.db.transact_write(ops)
        except Exception as e:
            logger.exception(
                "Payment commit failed for %s; gateway charge %s needs manual reversal",
                txn.transaction_id,
                result.gateway_transaction_id,
            )
            self._close_transaction(
                txn, TransactionStatus.ERROR, result, note="Commit failed after gateway approval"
            )
            raise BrokerError(
                ErrorCode.INTERNAL_ERROR, details={"transaction_id": txn.transaction_id}
            ) from e

        if committed:
            return

        current = self.bookings.get_booking(booking.booking_reference)
        logger.error(
            "Booking %s changed before payment %s committed; gateway charge %s needs manual reversal",
            booking.booking_reference,
            txn.transaction_id,
            result.gateway_transaction_id,
        )
        self._close_transaction(
            txn, TransactionStatus.ERROR, result, note="Booking changed before commit"
        )
        if current.is_paid:
            raise AlreadyPaidError(details={"booking_reference": booking.booking_reference})
        raise ConflictError(
            ErrorCode.CONCURRENT_UPDATE,
            details={"booking_reference": booking.booking_reference},
        )

    # Refunds

    def refund(
        self,
        transaction_id: str,
        amount: Decimal | None = None,
        reason: str | None = None,
        actor: str | None = None,
    ) -> PaymentOutcome:
        """Refund all or part of a successful payment.

        Args:
            transaction_id: The original payment
            amount: Amount to refund, defaults to the remaining balance
            reason: Free-text reason kept on both transactions
            actor: Who requested the refund

        Raises:
            TransactionNotFoundError: Unknown transaction
            NotRefundableError: Not a successful payment with a balance left
            ValidationError: Amount not positive or above the balance
        """
        with unexpected_errors(logger, "refund", transaction_id=transaction_id):
            parent = self.get_transaction(transaction_id)
            if not parent.can_be_refunded():
                raise NotRefundableError(details={"transaction_id": transaction_id})

            refundable = parent.refundable_amount
            amount = round_money(amount) if amount is not None else refundable
            if amount <= 0 or amount > refundable:
                raise ValidationError(
                    ErrorCode.REFUND_AMOUNT_INVALID,
                    details={"amount": str(amount), "refundable": str(refundable)},
                )
            full = amount == refundable

            now = self._clock()
            child = PaymentTransaction(
                transaction_id=generate_transaction_id(),
                booking_id=parent.booking_id,
                booking_reference=parent.booking_reference,
                owner=parent.owner,
                gateway=parent.gateway,
                amount=amount,
                currency=parent.currency,
                transaction_type=TransactionType.REFUND if full else TransactionType.PARTIAL_REFUND,
                payment_method=parent.payment_method,
                card_brand=parent.card_brand,
                card_last_four=parent.card_last_four,
                card_holder_name=parent.card_holder_name,
                status=TransactionStatus.PENDING,
                parent_transaction_id=parent.transaction_id,
                refund_reason=reason,
                metadata={"requested_by": actor} if actor else {},
                created_at=now,
                updated_at=now,
            )
            self._create_pending(child)

            request = RefundRequest(
                transaction_id=child.transaction_id,
                parent_gateway_transaction_id=parent.gateway_transaction_id or "",
                amount=amount,
                currency=parent.currency,
                reason=reason,
            )
            result, status = self._call_gateway(child, lambda: self.gateway.refund(request))

            if status != TransactionStatus.SUCCESS:
                self._record_failure(child, status, result)
                log_payment_operation(
                    logger,
                    "refund",
                    transaction_id=child.transaction_id,
                    booking_reference=parent.booking_reference,
                    amount=amount,
                    status=status.value,
                    error=result.message or REFUND_FAILED_MESSAGE,
                )
                return PaymentOutcome(
                    success=False,
                    transaction_id=child.transaction_id,
                    booking_reference=parent.booking_reference,
                    status=status,
                    amount=amount,
                    currency=parent.currency,
                    message=REFUND_FAILED_MESSAGE,
                )

            self._commit_refund(parent, child, amount, full, reason, result)
            log_payment_operation(
                logger,
                "refund",
                transaction_id=child.transaction_id,
                booking_reference=parent.booking_reference,
                amount=amount,
                status=TransactionStatus.SUCCESS.value,
                parent_transaction_id=parent.transaction_id,
            )
            return PaymentOutcome(
                success=True,
                transaction_id=child.transaction_id,
                booking_reference=parent.booking_reference,
                status=TransactionStatus.SUCCESS,
                amount=amount,
                currency=parent.currency,
                message="Refund processed successfully",
            )

    def _commit_refund(
        self,
        parent: PaymentTransaction,
        child: PaymentTransaction,
        amount: Decimal,
        full: bool,
        reason: str | None,
        result: GatewayResult,
    ) -> None:
        """Atomically settle the child, the parent balance and the booking.

        A partial refund leaves the parent in SUCCESS so the remaining balance
        stays refundable; a full refund moves it to REFUNDED.
        """
        now = self._clock()
        previous = parent.refund_amount or ZERO
        total_refunded = previous + amount
        parent_status = TransactionStatus.REFUNDED if full else TransactionStatus.SUCCESS
        booking_status = PaymentStatus.REFUNDED if full else PaymentStatus.PARTIALLY_REFUNDED

        parent_values: dict[str, Any] = {
            ":total": total_refunded,
            ":status": parent_status,
            ":success": TransactionStatus.SUCCESS,
            ":now": now,
        }
        parent_set = (
            "SET refund_amount = :total, #status = :status, refunded_at = :now, updated_at = :now"
        )
        if reason:
            parent_set += ", refund_reason = :reason"
            parent_values[":reason"] = reason
        if parent.refund_amount is None:
            parent_condition = "#status = :success AND attribute_not_exists(refund_amount)"
        else:
            parent_condition = "#status = :success AND refund_amount = :prev"
            parent_values[":prev"] = previous

        ops = [
            self.db.update_op(
                TRANSACTIONS_TABLE,
                key={"transaction_id": child.transaction_id},
                update_expression=(
                    "SET #status = :success, gateway_transaction_id = :gid, "
                    "gateway_response_code = :code, gateway_response_message = :msg, "
                    "processed_at = :now, updated_at = :now"
                ),
                expression_attribute_names={"#status": "status"},
                expression_attribute_values={
                    ":success": TransactionStatus.SUCCESS,
                    ":pending": TransactionStatus.PENDING,
                    ":gid": result.gateway_transaction_id,
                    ":code": result.response_code,
                    ":msg": result.message or "Refund issued",
                    ":now": now,
                },
                condition_expression="#status = :pending",
            ),
            self.db.update_op(
                TRANSACTIONS_TABLE,
                key={"transaction_id": parent.transaction_id},
                update_expression=parent_set,
                expression_attribute_names={"#status": "status"},
                expression_attribute_values=parent_values,
                condition_expression=parent_condition,
            ),
            self.db.update_op(
                BOOKINGS_TABLE,
                key={"booking_id": parent.booking_id},
                update_expression=(
                    "SET payment_status = :ps, refund_amount = :total, updated_at = :now"
                ),
                expression_attribute_values={
                    ":ps": booking_status,
                    ":total": total_refunded,
                    ":now": now,
                },
                condition_expression="attribute_exists(booking_id)",
            ),
        ]

        try:
            committed = self.db.transact_write(ops)
        except Exception as e:
            logger.exception(
                "Refund commit failed for %s; gateway refund %s needs manual review",
                child.transaction_id,
                result.gateway_transaction_id,
            )
            self._close_transaction(
                child, TransactionStatus.ERROR, result, note="Commit failed after gateway refund"
            )
            raise BrokerError(
                ErrorCode.INTERNAL_ERROR, details={"transaction_id": child.transaction_id}
            ) from e

        if not committed:
            logger.error(
                "Refund %s lost a race on %s; gateway refund %s needs manual review",
                child.transaction_id,
                parent.transaction_id,
                result.gateway_transaction_id,
            )
            self._close_transaction(
                child, TransactionStatus.ERROR, result, note="Parent changed before commit"
            )
            raise ConflictError(
                ErrorCode.CONCURRENT_UPDATE,
                details={"transaction_id": parent.transaction_id},
            )
