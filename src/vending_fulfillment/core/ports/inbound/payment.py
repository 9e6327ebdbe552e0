from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol, Sequence, Tuple

from returns.result import Result

from vending_fulfillment.core.domain.model.errors import VendingError
from vending_fulfillment.core.domain.model.payment import Payment


@dataclass(frozen=True)
class InitiatePaymentCommand:
    order_id: str
    user_id: str
    amount: Decimal
    payment_method: str
    payment_gateway: str
    currency: Optional[str] = None


@dataclass(frozen=True)
class PaymentInitiation:
    payment: Payment
    gateway_data: Mapping[str, Any]


@dataclass(frozen=True)
class PaymentWebhook:
    payment_id: str
    gateway_transaction_id: str
    status: str  # success | failed | pending
    gateway_payment_id: Optional[str] = None
    signature: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw_response: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class RefundCommand:
    payment_id: str
    refund_amount: Decimal
    reason: str


@dataclass(frozen=True)
class PaymentStats:
    total_payments: int = 0
    total_amount: Decimal = Decimal("0.00")
    total_successful_amount: Decimal = Decimal("0.00")
    avg_payment_amount: Decimal = Decimal("0.00")
    successful_payments: int = 0
    failed_payments: int = 0
    pending_payments: int = 0
    by_status: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ExpiryReport:
    expired: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()


class PaymentUseCase(Protocol):
    def initiate_payment(
        self, command: InitiatePaymentCommand
    ) -> Result[PaymentInitiation, VendingError]: ...

    def process_payment_webhook(
        self, webhook: PaymentWebhook
    ) -> Result[Payment, VendingError]: ...

    def confirm_payment(
        self,
        payment_id: str,
        gateway_transaction_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> Result[Payment, VendingError]: ...

    def process_refund(self, command: RefundCommand) -> Result[Payment, VendingError]: ...

    def expire_stale_payments(
        self, now: Optional[datetime] = None
    ) -> Result[ExpiryReport, VendingError]: ...

    def get_payment(
        self, payment_id: str, user_id: Optional[str] = None
    ) -> Result[Payment, VendingError]: ...

    def list_order_payments(self, order_id: str) -> Result[Sequence[Payment], VendingError]: ...

    def get_payment_stats(
        self, user_id: Optional[str] = None, machine_id: Optional[str] = None
    ) -> Result[PaymentStats, VendingError]: ...
