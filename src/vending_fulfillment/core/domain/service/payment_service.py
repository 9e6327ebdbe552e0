from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation as DecimalError
from typing import Callable, List, Optional, Sequence

from returns.result import Failure, Result, Success

from vending_fulfillment.core.domain.model.common import (
    SUPPORTED_CURRENCIES,
    Money,
    gateway_reference,
    now_utc,
)
from vending_fulfillment.core.domain.model.errors import (
    AlreadyPaid,
    AmountMismatch,
    ConcurrentModification,
    ExceedsRefundable,
    InvalidInput,
    InvalidOperation,
    NotFound,
    NotRefundable,
    VendingError,
)
from vending_fulfillment.core.domain.model.order import Order, OrderPaymentStatus
from vending_fulfillment.core.domain.model.payment import (
    DEFAULT_MAX_ATTEMPTS,
    PAYMENT_TTL,
    GatewayResponse,
    Payment,
    PaymentGatewayName,
    PaymentId,
    PaymentMetadata,
    PaymentMetadataItem,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
)
from vending_fulfillment.core.ports.inbound.order import OrderPaymentSync
from vending_fulfillment.core.ports.inbound.payment import (
    ExpiryReport,
    InitiatePaymentCommand,
    PaymentInitiation,
    PaymentStats,
    PaymentUseCase,
    PaymentWebhook,
    RefundCommand,
)
from vending_fulfillment.core.ports.outbound.gateway import GatewayRegistry
from vending_fulfillment.core.ports.outbound.payments import PaymentRepository

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3
WEBHOOK_STATUSES = frozenset({"success", "failed", "pending"})
EXPIRED_REASON = "Payment expired"

_CENT = Decimal("0.01")

PaymentChange = Callable[[Payment], Result[Payment, VendingError]]


@dataclass(frozen=True)
class PaymentDeps:
    payments: PaymentRepository
    orders: OrderPaymentSync
    gateways: GatewayRegistry
    payment_ttl: timedelta = PAYMENT_TTL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    clock: Callable[[], datetime] = now_utc


@dataclass(frozen=True)
class PaymentService(PaymentUseCase):
    """
    Ledger of payment attempts and refunds.

    A webhook may arrive twice, late, or race an expiry sweep. Rows are
    written with compare-and-set, a terminal row is never moved again, and
    the order is re-synchronised from the row's final state on every call so
    a replay can finish work a previous delivery left half done.
    """

    deps: PaymentDeps

    # ---- initiation --------------------------------------------------------

    def initiate_payment(
        self, command: InitiatePaymentCommand
    ) -> Result[PaymentInitiation, VendingError]:
        v = self._validate_initiation(command)
        if isinstance(v, Failure):
            return v

        found = self.deps.orders.get_order(command.order_id, command.user_id)
        if isinstance(found, Failure):
            return found
        order = found.unwrap()
        if order.is_terminal:
            return Failure(
                InvalidOperation(
                    f"order {command.order_id} is {order.order_status.value}; payment not allowed"
                )
            )

        currency = command.currency or order.total_amount.currency
        amount = Money.of(command.amount, currency)
        if amount != order.total_amount:
            return Failure(
                AmountMismatch(
                    message="payment amount does not match order total",
                    expected=order.total_amount.amount,
                    actual=amount.amount,
                )
            )

        earlier = self.deps.payments.find_by_order(command.order_id, TransactionType.PAYMENT)
        if isinstance(earlier, Failure):
            return earlier
        if any(p.is_successful for p in earlier.unwrap()):
            return Failure(
                AlreadyPaid(message="order is already paid", order_id=command.order_id)
            )
        if len(earlier.unwrap()) >= self.deps.max_attempts:
            return Failure(
                InvalidOperation(
                    f"payment attempts exhausted for order {command.order_id} "
                    f"({self.deps.max_attempts} max)"
                )
            )

        now = self.deps.clock()
        payment = Payment(
            payment_id=PaymentId.new(),
            order_id=command.order_id,
            user_id=command.user_id,
            amount=amount,
            payment_method=PaymentMethod(command.payment_method),
            payment_gateway=PaymentGatewayName(command.payment_gateway),
            metadata=_metadata(order),
            initiated_at=now,
            expires_at=now + self.deps.payment_ttl,
            attempts=len(earlier.unwrap()) + 1,
            max_attempts=self.deps.max_attempts,
            last_attempt_at=now,
        )
        added = self.deps.payments.add(payment)
        if isinstance(added, Failure):
            return added
        payment = added.unwrap()

        attached = self.deps.orders.attach_payment(command.order_id, payment.payment_id.value)
        if isinstance(attached, Failure):
            return attached

        adapter = self.deps.gateways.adapter_for(payment.payment_gateway.value)
        checkout = adapter.create_payment(payment)
        if isinstance(checkout, Failure):
            err = checkout.failure()
            logger.warning(
                "gateway %s rejected payment %s: %s",
                payment.payment_gateway.value,
                payment.payment_id.value,
                err,
            )
            self._apply(
                payment.payment_id,
                lambda p: Success(
                    p if p.is_terminal else p.marked_failed(now, "GATEWAY_ERROR", err.message)
                ),
            )
            return Failure(err)
        prepared = checkout.unwrap()

        stored = self._apply(
            payment.payment_id,
            lambda p: Success(p.with_gateway_response(prepared.response)),
        )
        if isinstance(stored, Failure):
            return stored
        payment = stored.unwrap()

        logger.info(
            "payment %s initiated for order %s via %s: %s %s",
            payment.payment_id.value,
            payment.order_id,
            payment.payment_gateway.value,
            payment.amount.amount,
            payment.currency,
        )

        if prepared.settled:
            settled = self.process_payment_webhook(
                PaymentWebhook(
                    payment_id=payment.payment_id.value,
                    gateway_transaction_id=(
                        prepared.response.gateway_transaction_id
                        or gateway_reference("CASH_", now)
                    ),
                    status="success",
                )
            )
            if isinstance(settled, Failure):
                return settled
            payment = settled.unwrap()

        return Success(PaymentInitiation(payment=payment, gateway_data=prepared.client_payload))

    # ---- settlement --------------------------------------------------------

    def process_payment_webhook(self, webhook: PaymentWebhook) -> Result[Payment, VendingError]:
        if not webhook.payment_id or not webhook.payment_id.strip():
            return Failure(InvalidInput("payment_id is required"))
        if not webhook.gateway_transaction_id or not webhook.gateway_transaction_id.strip():
            return Failure(InvalidInput("gateway_transaction_id is required"))
        if webhook.status not in WEBHOOK_STATUSES:
            return Failure(InvalidInput("status must be one of: failed, pending, success"))

        response = GatewayResponse(
            gateway_transaction_id=webhook.gateway_transaction_id,
            gateway_payment_id=webhook.gateway_payment_id,
            signature=webhook.signature,
            error_code=webhook.error_code,
            error_message=webhook.error_message,
            raw_response=webhook.raw_response,
        )
        now = self.deps.clock()

        def change(payment: Payment) -> Result[Payment, VendingError]:
            if payment.transaction_type is not TransactionType.PAYMENT:
                return Failure(InvalidOperation("webhooks only settle payment rows"))
            if payment.is_terminal:
                logger.info(
                    "webhook for payment %s ignored: already %s",
                    payment.payment_id.value,
                    payment.status.value,
                )
                return Success(payment)
            if webhook.status == "success":
                return Success(payment.marked_successful(now, response))
            if webhook.status == "failed":
                return Success(
                    payment.with_gateway_response(response).marked_failed(
                        now,
                        webhook.error_code or "PAYMENT_FAILED",
                        webhook.error_message or "payment failed at gateway",
                    )
                )
            return Success(payment.marked_processing(now, response))

        stored = self._apply(PaymentId(webhook.payment_id), change)
        if isinstance(stored, Failure):
            return stored
        payment = stored.unwrap()
        return self._sync_order(payment).map(lambda _: payment)

    def confirm_payment(
        self,
        payment_id: str,
        gateway_transaction_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> Result[Payment, VendingError]:
        return self.process_payment_webhook(
            PaymentWebhook(
                payment_id=payment_id,
                gateway_transaction_id=(
                    gateway_transaction_id or gateway_reference("MANUAL_", self.deps.clock())
                ),
                status="success",
                signature=signature,
            )
        )

    # ---- refunds -----------------------------------------------------------

    def process_refund(self, command: RefundCommand) -> Result[Payment, VendingError]:
        if not command.reason or not command.reason.strip():
            return Failure(InvalidInput("refund reason is required"))
        requested = _as_decimal(command.refund_amount)
        if requested is None or requested <= 0:
            return Failure(InvalidInput("refund_amount must be > 0"))

        found = self.deps.payments.get(PaymentId(command.payment_id))
        if isinstance(found, Failure):
            return found
        original = found.unwrap()
        if not original.can_be_refunded:
            return Failure(
                NotRefundable(
                    message="payment cannot be refunded",
                    payment_id=command.payment_id,
                )
            )

        refund = Money.of(requested, original.currency)
        if refund.amount > original.refundable_amount.amount:
            return Failure(
                ExceedsRefundable(
                    message="refund amount exceeds refundable amount",
                    refundable=original.refundable_amount.amount,
                    requested=refund.amount,
                )
            )

        now = self.deps.clock()
        row = Payment(
            payment_id=PaymentId.new(),
            order_id=original.order_id,
            user_id=original.user_id,
            amount=refund,
            payment_method=original.payment_method,
            payment_gateway=original.payment_gateway,
            metadata=original.metadata,
            initiated_at=now,
            expires_at=now + self.deps.payment_ttl,
            transaction_type=(
                TransactionType.REFUND
                if refund == original.amount
                else TransactionType.PARTIAL_REFUND
            ),
            status=TransactionStatus.PROCESSING,
            max_attempts=self.deps.max_attempts,
            notes=command.reason,
        )
        added = self.deps.payments.add(row)
        if isinstance(added, Failure):
            return added
        row = added.unwrap()

        adapter = self.deps.gateways.adapter_for(original.payment_gateway.value)
        outcome = adapter.create_refund(original, refund)
        if not outcome.success:
            logger.warning(
                "refund %s against %s declined by %s: %s",
                row.payment_id.value,
                original.payment_id.value,
                original.payment_gateway.value,
                outcome.error_message,
            )
            return self.deps.payments.replace(
                row.marked_failed(
                    now,
                    outcome.error_code or "REFUND_FAILED",
                    outcome.error_message or "refund failed at gateway",
                )
            )

        refund_id = outcome.refund_id or gateway_reference("REFUND_", now)
        applied = self.deps.payments.apply_refund(original.payment_id, refund, refund_id)
        if isinstance(applied, Failure):
            # the gateway already moved money; this row is the audit trail
            logger.error(
                "refund %s executed at gateway but not applied to %s: %s",
                refund_id,
                original.payment_id.value,
                applied.failure(),
            )
            self.deps.payments.replace(
                row.marked_failed(now, "LEDGER_APPLY_FAILED", applied.failure().message)
            )
            return applied

        logger.info(
            "refunded %s %s of payment %s (%s)",
            refund.amount,
            refund.currency,
            original.payment_id.value,
            refund_id,
        )
        return self.deps.payments.replace(
            row.marked_successful(now, GatewayResponse(gateway_transaction_id=refund_id))
        )

    # ---- expiry ------------------------------------------------------------

    def expire_stale_payments(
        self, now: Optional[datetime] = None
    ) -> Result[ExpiryReport, VendingError]:
        """Fails open payments past ``expires_at``; their orders are cancelled."""
        moment = now or self.deps.clock()
        stale = self.deps.payments.find_open_expired(moment)
        if isinstance(stale, Failure):
            return stale

        expired: List[str] = []
        errors: List[str] = []
        for candidate in stale.unwrap():

            def change(payment: Payment) -> Result[Payment, VendingError]:
                if payment.is_terminal:
                    return Success(payment)
                return Success(
                    payment.marked_failed(
                        moment,
                        "PAYMENT_EXPIRED",
                        "payment window elapsed",
                        status=TransactionStatus.EXPIRED,
                    )
                )

            result = self._apply(candidate.payment_id, change).bind(
                lambda p: self._sync_order(p).map(lambda _: p)
            )
            if isinstance(result, Failure):
                errors.append(f"{candidate.payment_id.value}: {result.failure()}")
                continue
            if result.unwrap().status is TransactionStatus.EXPIRED:
                expired.append(candidate.payment_id.value)

        if expired or errors:
            logger.info(
                "payment expiry sweep: %d expired, %d error(s)", len(expired), len(errors)
            )
        return Success(ExpiryReport(expired=tuple(expired), errors=tuple(errors)))

    # ---- reads -------------------------------------------------------------

    def get_payment(
        self, payment_id: str, user_id: Optional[str] = None
    ) -> Result[Payment, VendingError]:
        if not payment_id or not payment_id.strip():
            return Failure(InvalidInput("payment_id is required"))
        found = self.deps.payments.get(PaymentId(payment_id))
        if isinstance(found, Failure):
            return found
        payment = found.unwrap()
        if user_id is not None and payment.user_id != user_id:
            return Failure(
                NotFound(message="payment not found", entity="payment", key=payment_id)
            )
        return Success(payment)

    def list_order_payments(self, order_id: str) -> Result[Sequence[Payment], VendingError]:
        return self.deps.payments.find_by_order(order_id).map(
            lambda rows: tuple(sorted(rows, key=lambda p: p.initiated_at))
        )

    def get_payment_stats(
        self, user_id: Optional[str] = None, machine_id: Optional[str] = None
    ) -> Result[PaymentStats, VendingError]:
        return self.deps.payments.find(
            user_id=user_id, machine_id=machine_id, transaction_type=TransactionType.PAYMENT
        ).map(_stats)

    # ---- internals ---------------------------------------------------------

    def _apply(self, payment_id: PaymentId, change: PaymentChange) -> Result[Payment, VendingError]:
        """Load, change, compare-and-set; re-evaluate on a lost race."""
        last: Result[Payment, VendingError] = Failure(
            ConcurrentModification(
                message="payment write contention", entity="payment", key=payment_id.value
            )
        )
        for _ in range(MAX_WRITE_ATTEMPTS):
            loaded = self.deps.payments.get(payment_id)
            if isinstance(loaded, Failure):
                return loaded
            before = loaded.unwrap()

            changed = change(before)
            if isinstance(changed, Failure):
                return changed
            after = changed.unwrap()
            if after is before:
                return Success(before)

            last = self.deps.payments.replace(after)
            if isinstance(last, Success):
                if before.status is not after.status:
                    logger.info(
                        "payment %s: %s -> %s",
                        payment_id.value,
                        before.status.value,
                        after.status.value,
                    )
                return last
            if not isinstance(last.failure(), ConcurrentModification):
                return last
            logger.info("payment %s changed concurrently, re-evaluating", payment_id.value)
        return last

    def _sync_order(self, payment: Payment) -> Result[Optional[Order], VendingError]:
        """Pushes a settled row's outcome onto its order. Idempotent."""
        if payment.is_successful:
            result = self.deps.orders.update_payment_status(
                payment.order_id,
                OrderPaymentStatus.COMPLETED,
                transaction_id=payment.gateway_response.gateway_transaction_id,
            )
        elif payment.is_failed:
            siblings = self.deps.payments.find_by_order(
                payment.order_id, TransactionType.PAYMENT
            )
            if isinstance(siblings, Failure):
                return siblings
            if any(p.is_successful for p in siblings.unwrap()):
                logger.info(
                    "payment %s %s but order %s is paid by another row",
                    payment.payment_id.value,
                    payment.status.value,
                    payment.order_id,
                )
                return Success(None)
            reason = EXPIRED_REASON if payment.status is TransactionStatus.EXPIRED else None
            result = self.deps.orders.update_payment_status(
                payment.order_id,
                OrderPaymentStatus.FAILED,
                reason=reason,
                payment_id=payment.payment_id.value,
            )
        else:
            return Success(None)

        if isinstance(result, Failure) and isinstance(result.failure(), NotFound):
            logger.warning(
                "payment %s settled but order %s no longer exists",
                payment.payment_id.value,
                payment.order_id,
            )
            return Success(None)
        return result

    def _validate_initiation(
        self, cmd: InitiatePaymentCommand
    ) -> Result[InitiatePaymentCommand, VendingError]:
        if not cmd.order_id or not cmd.order_id.strip():
            return Failure(InvalidInput("order_id is required"))
        if not cmd.user_id or not cmd.user_id.strip():
            return Failure(InvalidInput("user_id is required"))
        amount = _as_decimal(cmd.amount)
        if amount is None or amount <= 0:
            return Failure(InvalidInput("amount must be > 0"))
        if cmd.payment_method not in {m.value for m in PaymentMethod}:
            return Failure(InvalidInput(f"unsupported payment_method: {cmd.payment_method}"))
        if cmd.payment_gateway not in {g.value for g in PaymentGatewayName}:
            return Failure(InvalidInput(f"unsupported payment_gateway: {cmd.payment_gateway}"))
        if cmd.currency is not None and cmd.currency not in SUPPORTED_CURRENCIES:
            return Failure(InvalidInput(f"unsupported currency: {cmd.currency}"))
        return Success(cmd)


# ---- pure helpers ----------------------------------------------------------


def _as_decimal(value: object) -> Optional[Decimal]:
    try:
        dec = Decimal(str(value))
    except (DecimalError, ValueError):
        return None
    return dec if dec.is_finite() else None


def _metadata(order: Order) -> PaymentMetadata:
    return PaymentMetadata(
        order_id=order.order_id.value,
        user_id=order.user_id,
        machine_id=order.delivery_info.machine_id,
        items=tuple(
            PaymentMetadataItem(
                product_id=it.product_id,
                product_name=it.product_name,
                quantity=it.quantity,
                unit_price=it.unit_price,
            )
            for it in order.items
        ),
    )


def _stats(payments: Sequence[Payment]) -> PaymentStats:
    if not payments:
        return PaymentStats()
    by_status = Counter(p.status.value for p in payments)
    total = sum((p.amount.amount for p in payments), Decimal("0"))
    settled = sum((p.amount.amount for p in payments if p.is_successful), Decimal("0"))
    return PaymentStats(
        total_payments=len(payments),
        total_amount=total.quantize(_CENT, rounding=ROUND_HALF_UP),
        total_successful_amount=settled.quantize(_CENT, rounding=ROUND_HALF_UP),
        avg_payment_amount=(total / len(payments)).quantize(_CENT, rounding=ROUND_HALF_UP),
        successful_payments=sum(1 for p in payments if p.is_successful),
        failed_payments=sum(1 for p in payments if p.is_failed),
        pending_payments=sum(1 for p in payments if p.is_pending),
        by_status=dict(by_status),
    )
