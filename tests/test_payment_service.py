"""Tests for the payment ledger: initiation, webhooks, refunds and expiry."""

from datetime import timedelta
from decimal import Decimal

from returns.result import Failure

from vending_fulfillment.core.domain.model.errors import (
    AlreadyPaid,
    AmountMismatch,
    ExceedsRefundable,
    GatewayError,
    InvalidInput,
    InvalidOperation,
    NotFound,
    NotRefundable,
)
from vending_fulfillment.core.domain.model.order import OrderPaymentStatus, OrderStatus
from vending_fulfillment.core.domain.model.payment import (
    PaymentId,
    TransactionStatus,
    TransactionType,
)
from vending_fulfillment.core.ports.inbound.payment import (
    InitiatePaymentCommand,
    PaymentWebhook,
    RefundCommand,
)


def _initiate(world, order, amount=None, gateway="razorpay", method="upi", user_id=None):
    return world.payment_service.initiate_payment(
        InitiatePaymentCommand(
            order_id=order.order_id.value,
            user_id=user_id or order.user_id,
            amount=order.total_amount.amount if amount is None else amount,
            payment_method=method,
            payment_gateway=gateway,
        )
    )


def _webhook(world, payment, status="success", tx="gw-tx-1", **extra):
    return world.payment_service.process_payment_webhook(
        PaymentWebhook(
            payment_id=payment.payment_id.value,
            gateway_transaction_id=tx,
            status=status,
            **extra,
        )
    )


def _order(world, payment):
    return world.order_service.get_order(payment.order_id).unwrap()


def _paid(world, gateway="razorpay"):
    order = world.checkout(gateway=gateway)
    payment = _initiate(world, order, gateway=gateway).unwrap().payment
    return _webhook(world, payment).unwrap()


class TestInitiatePayment:
    def test_creates_pending_row_with_gateway_payload(self, world):
        order = world.checkout()
        initiation = _initiate(world, order).unwrap()
        payment = initiation.payment

        assert payment.status is TransactionStatus.PENDING
        assert payment.transaction_type is TransactionType.PAYMENT
        assert payment.amount == order.total_amount
        assert payment.expires_at == world.clock.now + timedelta(minutes=15)
        assert payment.metadata.machine_id == "VM-001"
        assert payment.gateway_response.gateway_order_id.startswith("rzp_order_")

        data = initiation.gateway_data
        assert data["amount"] == 9440
        assert data["currency"] == "INR"
        assert data["key"] == "rzp_test_key"
        assert data["orderId"] == payment.gateway_response.gateway_order_id

        assert _order(world, payment).payment_info.payment_id == payment.payment_id.value

    def test_stripe_payload(self, world):
        order = world.checkout(gateway="stripe")
        initiation = _initiate(world, order, gateway="stripe", method="card").unwrap()
        assert initiation.gateway_data["currency"] == "inr"
        assert initiation.gateway_data["clientSecret"].endswith("_secret_test")
        assert initiation.payment.gateway_response.gateway_payment_id.startswith("pi_")

    def test_other_gateways_use_mock_checkout(self, world):
        order = world.checkout(gateway="paytm")
        data = _initiate(world, order, gateway="paytm", method="wallet").unwrap().gateway_data
        assert data["redirectUrl"].endswith(data["transactionId"])
        assert data["transactionId"].startswith("MOCK_")

    def test_cash_settles_immediately(self, world):
        order = world.checkout(gateway="cash", method="cash")
        payment = _initiate(world, order, gateway="cash", method="cash").unwrap().payment

        assert payment.status is TransactionStatus.SUCCESS
        assert payment.gateway_response.gateway_transaction_id.startswith("CASH_")
        stored = _order(world, payment)
        assert stored.order_status is OrderStatus.CONFIRMED
        assert stored.payment_info.payment_status is OrderPaymentStatus.COMPLETED

    def test_amount_must_match_order_total(self, world):
        order = world.checkout()
        err = _initiate(world, order, amount=Decimal("94.39")).failure()
        assert isinstance(err, AmountMismatch)
        assert err.expected == Decimal("94.40")

    def test_order_must_belong_to_user(self, world):
        order = world.checkout()
        assert isinstance(_initiate(world, order, user_id="u-2").failure(), NotFound)

    def test_unknown_order(self, world):
        result = world.payment_service.initiate_payment(
            InitiatePaymentCommand("ORD-NOPE", "u-1", Decimal("1.00"), "upi", "razorpay")
        )
        assert isinstance(result.failure(), NotFound)

    def test_rejects_bad_input(self, world):
        order = world.checkout()
        assert isinstance(_initiate(world, order, amount=Decimal("0")).failure(), InvalidInput)
        assert isinstance(_initiate(world, order, gateway="bitcoin").failure(), InvalidInput)
        assert isinstance(_initiate(world, order, method="barter").failure(), InvalidInput)

    def test_already_paid(self, world):
        payment = _paid(world)
        order = _order(world, payment)
        assert isinstance(_initiate(world, order).failure(), AlreadyPaid)

    def test_cancelled_order_cannot_be_paid(self, world):
        order = world.checkout()
        world.order_service.cancel_order(order.order_id.value, "u-1", "bye").unwrap()
        assert isinstance(_initiate(world, order).failure(), InvalidOperation)

    def test_new_attempt_allowed_while_unpaid(self, world):
        order = world.checkout()
        first = _initiate(world, order).unwrap().payment
        second = _initiate(world, order).unwrap().payment
        assert first.payment_id != second.payment_id

    def test_attempts_are_capped_per_order(self, world):
        order = world.checkout()
        rows = [_initiate(world, order).unwrap().payment for _ in range(3)]
        assert [p.attempts for p in rows] == [1, 2, 3]
        assert all(p.max_attempts == 3 for p in rows)

        result = _initiate(world, order)
        assert isinstance(result.failure(), InvalidOperation)
        assert _order(world, rows[0]).order_status is OrderStatus.PENDING

    def test_gateway_rejection_fails_row(self, world):
        world.mock_gateway.max_amount = Decimal("10.00")
        order = world.checkout(gateway="paytm")
        result = _initiate(world, order, gateway="paytm", method="wallet")
        assert isinstance(result.failure(), GatewayError)

        (row,) = world.payment_service.list_order_payments(order.order_id.value).unwrap()
        assert row.status is TransactionStatus.FAILED
        assert row.gateway_response.error_code == "GATEWAY_ERROR"


class TestWebhook:
    def test_success_settles_payment_and_confirms_order(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment
        settled = _webhook(world, payment, gateway_payment_id="pay_123").unwrap()

        assert settled.status is TransactionStatus.SUCCESS
        assert settled.completed_at == world.clock.now
        assert settled.refundable_amount == settled.amount
        assert settled.gateway_response.gateway_payment_id == "pay_123"

        stored = _order(world, settled)
        assert stored.order_status is OrderStatus.CONFIRMED
        assert stored.payment_info.transaction_id == "gw-tx-1"

    def test_replayed_success_changes_nothing(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment
        first = _webhook(world, payment).unwrap()
        order_after_first = _order(world, first)

        again = _webhook(world, payment, tx="gw-tx-2").unwrap()
        assert again.version == first.version
        assert again.gateway_response.gateway_transaction_id == "gw-tx-1"
        assert _order(world, again).version == order_after_first.version

    def test_failure_cancels_order_and_restores_stock(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment
        failed = _webhook(
            world, payment, status="failed", error_code="BAD_CARD", error_message="declined"
        ).unwrap()

        assert failed.status is TransactionStatus.FAILED
        assert failed.gateway_response.error_code == "BAD_CARD"
        stored = _order(world, failed)
        assert stored.order_status is OrderStatus.CANCELLED
        assert stored.payment_info.payment_status is OrderPaymentStatus.FAILED
        assert world.stock("VM-001", "A1") == 10

    def test_replayed_failure_restores_once(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment
        for _ in range(3):
            _webhook(world, payment, status="failed").unwrap()
        assert world.stock("VM-001", "A1") == 10

    def test_late_success_after_failure_is_ignored(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment
        _webhook(world, payment, status="failed").unwrap()
        late = _webhook(world, payment, status="success").unwrap()
        assert late.status is TransactionStatus.FAILED
        assert _order(world, late).order_status is OrderStatus.CANCELLED

    def test_repeated_pending_keeps_order_open(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment

        for i in range(5):
            world.clock.advance(seconds=30)
            row = _webhook(world, payment, status="pending", gateway_payment_id=f"pay_{i}").unwrap()
            assert row.status is TransactionStatus.PROCESSING

        assert row.attempts == 1
        assert row.last_attempt_at == world.clock.now
        assert row.gateway_response.gateway_payment_id == "pay_4"
        stored = _order(world, row)
        assert stored.order_status is OrderStatus.PENDING
        assert stored.payment_info.payment_status is OrderPaymentStatus.PENDING
        assert world.stock("VM-001", "A1") == 8

        settled = _webhook(world, payment).unwrap()
        assert settled.status is TransactionStatus.SUCCESS
        assert _order(world, settled).order_status is OrderStatus.CONFIRMED

    def test_stale_failure_after_other_row_paid(self, world):
        order = world.checkout()
        abandoned = _initiate(world, order).unwrap().payment
        cash = _initiate(world, order, gateway="cash", method="cash").unwrap().payment
        assert cash.status is TransactionStatus.SUCCESS

        stale = _webhook(world, abandoned, status="failed", tx="gw-tx-old").unwrap()
        assert stale.status is TransactionStatus.FAILED

        stored = _order(world, stale)
        assert stored.order_status is OrderStatus.CONFIRMED
        assert stored.payment_info.payment_status is OrderPaymentStatus.COMPLETED
        assert stored.cancel_reason is None
        assert world.stock("VM-001", "A1") == 8

    def test_failure_of_superseded_attempt_keeps_order(self, world):
        order = world.checkout()
        first = _initiate(world, order).unwrap().payment
        second = _initiate(world, order, gateway="stripe", method="card").unwrap().payment

        _webhook(world, first, status="failed").unwrap()
        assert _order(world, first).order_status is OrderStatus.PENDING
        assert world.stock("VM-001", "A1") == 8

        settled = _webhook(world, second).unwrap()
        assert _order(world, settled).order_status is OrderStatus.CONFIRMED

    def test_rejects_malformed_webhooks(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment
        assert isinstance(_webhook(world, payment, status="maybe").failure(), InvalidInput)
        assert isinstance(_webhook(world, payment, tx="").failure(), InvalidInput)

    def test_unknown_payment(self, world):
        result = world.payment_service.process_payment_webhook(
            PaymentWebhook(payment_id="PAY-NOPE", gateway_transaction_id="x", status="success")
        )
        assert isinstance(result.failure(), NotFound)

    def test_confirm_payment_uses_manual_reference(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment
        confirmed = world.payment_service.confirm_payment(payment.payment_id.value).unwrap()
        assert confirmed.status is TransactionStatus.SUCCESS
        assert confirmed.gateway_response.gateway_transaction_id.startswith("MANUAL_")


class TestRefund:
    def test_back_to_back_refunds_get_distinct_ids(self, world):
        payment = _paid(world)
        pid = payment.payment_id.value
        ids = {
            world.payment_service.process_refund(
                RefundCommand(pid, Decimal("10.00"), f"refund {i}")
            ).unwrap().gateway_response.gateway_transaction_id
            for i in range(5)
        }
        assert len(ids) == 5

    def test_partial_refunds_until_exhausted(self, world):
        payment = _paid(world)
        pid = payment.payment_id.value

        first = world.payment_service.process_refund(
            RefundCommand(pid, Decimal("50.00"), "one item missing")
        ).unwrap()
        assert first.transaction_type is TransactionType.PARTIAL_REFUND
        assert first.status is TransactionStatus.SUCCESS
        assert first.gateway_response.gateway_transaction_id.startswith("rfnd_")
        assert first.notes == "one item missing"

        original = world.payment_service.get_payment(pid).unwrap()
        assert original.refundable_amount.amount == Decimal("44.40")
        assert original.refunded_amount.amount == Decimal("50.00")
        assert original.refundable_amount + original.refunded_amount == original.amount

        too_much = world.payment_service.process_refund(
            RefundCommand(pid, Decimal("50.00"), "again")
        )
        assert isinstance(too_much.failure(), ExceedsRefundable)

        world.payment_service.process_refund(
            RefundCommand(pid, Decimal("44.40"), "rest")
        ).unwrap()
        exhausted = world.payment_service.process_refund(
            RefundCommand(pid, Decimal("0.01"), "more")
        )
        assert isinstance(exhausted.failure(), NotRefundable)

    def test_full_refund_type(self, world):
        payment = _paid(world)
        refund = world.payment_service.process_refund(
            RefundCommand(payment.payment_id.value, Decimal("94.40"), "machine broken")
        ).unwrap()
        assert refund.transaction_type is TransactionType.REFUND

    def test_refund_leaves_order_alone(self, world):
        payment = _paid(world)
        world.payment_service.process_refund(
            RefundCommand(payment.payment_id.value, Decimal("10.00"), "goodwill")
        ).unwrap()
        assert _order(world, payment).order_status is OrderStatus.CONFIRMED

    def test_pending_payment_not_refundable(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment
        result = world.payment_service.process_refund(
            RefundCommand(payment.payment_id.value, Decimal("1.00"), "why")
        )
        assert isinstance(result.failure(), NotRefundable)

    def test_refund_rows_not_refundable(self, world):
        payment = _paid(world)
        refund = world.payment_service.process_refund(
            RefundCommand(payment.payment_id.value, Decimal("10.00"), "goodwill")
        ).unwrap()
        result = world.payment_service.process_refund(
            RefundCommand(refund.payment_id.value, Decimal("1.00"), "nested")
        )
        assert isinstance(result.failure(), NotRefundable)

    def test_rejects_bad_input(self, world):
        payment = _paid(world)
        pid = payment.payment_id.value
        assert isinstance(
            world.payment_service.process_refund(RefundCommand(pid, Decimal("0"), "x")).failure(),
            InvalidInput,
        )
        assert isinstance(
            world.payment_service.process_refund(RefundCommand(pid, Decimal("1"), " ")).failure(),
            InvalidInput,
        )

    def test_declined_refund_marks_row_failed(self, world):
        world.mock_gateway.decline_refunds = True
        payment = _paid(world, gateway="paytm")
        refund = world.payment_service.process_refund(
            RefundCommand(payment.payment_id.value, Decimal("10.00"), "goodwill")
        ).unwrap()

        assert refund.status is TransactionStatus.FAILED
        assert refund.gateway_response.error_code == "REFUND_DECLINED"
        original = world.payment_service.get_payment(payment.payment_id.value).unwrap()
        assert original.refunded_amount.amount == Decimal("0.00")
        assert original.refundable_amount == original.amount


class TestExpiry:
    def test_sweep_expires_and_cancels(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment
        world.clock.advance(minutes=16)

        report = world.payment_service.expire_stale_payments().unwrap()
        assert report.expired == (payment.payment_id.value,)
        assert report.errors == ()

        row = world.payments.get(PaymentId(payment.payment_id.value)).unwrap()
        assert row.status is TransactionStatus.EXPIRED
        stored = _order(world, row)
        assert stored.order_status is OrderStatus.CANCELLED
        assert stored.cancel_reason == "Payment expired"
        assert world.stock("VM-001", "A1") == 10

    def test_fresh_payments_are_kept(self, world):
        order = world.checkout()
        _initiate(world, order).unwrap()
        world.clock.advance(minutes=10)
        assert world.payment_service.expire_stale_payments().unwrap().expired == ()

    def test_late_webhook_after_expiry_changes_nothing(self, world):
        order = world.checkout()
        payment = _initiate(world, order).unwrap().payment
        world.clock.advance(minutes=16)
        world.payment_service.expire_stale_payments().unwrap()

        late = _webhook(world, payment).unwrap()
        assert late.status is TransactionStatus.EXPIRED
        assert _order(world, late).order_status is OrderStatus.CANCELLED
        assert world.stock("VM-001", "A1") == 10

    def test_stale_row_expiry_after_other_row_paid(self, world):
        order = world.checkout()
        abandoned = _initiate(world, order).unwrap().payment
        _initiate(world, order, gateway="cash", method="cash").unwrap()
        world.clock.advance(minutes=20)

        report = world.payment_service.expire_stale_payments().unwrap()
        assert report.expired == (abandoned.payment_id.value,)

        stored = _order(world, abandoned)
        assert stored.order_status is OrderStatus.CONFIRMED
        assert stored.payment_info.payment_status is OrderPaymentStatus.COMPLETED
        assert stored.cancel_reason is None
        assert world.stock("VM-001", "A1") == 8

    def test_sweep_is_idempotent(self, world):
        order = world.checkout()
        _initiate(world, order).unwrap()
        world.clock.advance(minutes=16)
        world.payment_service.expire_stale_payments().unwrap()
        assert world.payment_service.expire_stale_payments().unwrap().expired == ()
        assert world.stock("VM-001", "A1") == 10


class TestReads:
    def test_get_payment_scoped_to_owner(self, world):
        payment = _paid(world)
        assert isinstance(
            world.payment_service.get_payment(payment.payment_id.value, "u-2"),
            Failure,
        )
        assert world.payment_service.get_payment(payment.payment_id.value, "u-1").unwrap()

    def test_list_order_payments_includes_refunds(self, world):
        payment = _paid(world)
        world.payment_service.process_refund(
            RefundCommand(payment.payment_id.value, Decimal("10.00"), "goodwill")
        ).unwrap()
        rows = world.payment_service.list_order_payments(payment.order_id).unwrap()
        assert [r.transaction_type for r in rows] == [
            TransactionType.PAYMENT,
            TransactionType.PARTIAL_REFUND,
        ]

    def test_stats(self, world):
        _paid(world)
        order = world.checkout("u-2", lines=(("P-WATER", "VM-002", "B1", 1),))
        pending = _initiate(world, order).unwrap().payment
        _webhook(world, pending, status="failed").unwrap()

        stats = world.payment_service.get_payment_stats().unwrap()
        assert stats.total_payments == 2
        assert stats.successful_payments == 1
        assert stats.failed_payments == 1
        assert stats.total_amount == Decimal("123.90")
        assert stats.total_successful_amount == Decimal("94.40")
        assert stats.avg_payment_amount == Decimal("61.95")

        vm2 = world.payment_service.get_payment_stats(machine_id="VM-002").unwrap()
        assert vm2.total_payments == 1
