from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from vending_fulfillment.core.domain.model.common import Money, new_reference

PAYMENT_TTL = timedelta(minutes=15)
DEFAULT_MAX_ATTEMPTS = 3


class PaymentMethod(str, Enum):
    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    CASH = "cash"


class PaymentGatewayName(str, Enum):
    RAZORPAY = "razorpay"
    STRIPE = "stripe"
    PAYTM = "paytm"
    PHONEPE = "phonepe"
    GOOGLEPAY = "googlepay"
    CASH = "cash"


class TransactionType(str, Enum):
    PAYMENT = "payment"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


OPEN_TRANSACTION_STATUSES = frozenset(
    {TransactionStatus.PENDING, TransactionStatus.PROCESSING}
)
FAILED_TRANSACTION_STATUSES = frozenset(
    {TransactionStatus.FAILED, TransactionStatus.CANCELLED, TransactionStatus.EXPIRED}
)


@dataclass(frozen=True)
class PaymentId:
    value: str

    @staticmethod
    def new() -> "PaymentId":
        return PaymentId(new_reference("PAY", 8))


@dataclass(frozen=True)
class GatewayResponse:
    gateway_transaction_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    signature: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw_response: Optional[Mapping[str, Any]] = None

    def merged(self, other: "GatewayResponse") -> "GatewayResponse":
        """Fields set on ``other`` win; unset ones keep the current value."""
        return GatewayResponse(
            gateway_transaction_id=other.gateway_transaction_id or self.gateway_transaction_id,
            gateway_order_id=other.gateway_order_id or self.gateway_order_id,
            gateway_payment_id=other.gateway_payment_id or self.gateway_payment_id,
            signature=other.signature or self.signature,
            error_code=other.error_code or self.error_code,
            error_message=other.error_message or self.error_message,
            raw_response=other.raw_response if other.raw_response is not None else self.raw_response,
        )


@dataclass(frozen=True)
class PaymentMetadataItem:
    product_id: str
    product_name: str
    quantity: int
    unit_price: Money


@dataclass(frozen=True)
class PaymentMetadata:
    order_id: str
    user_id: str
    machine_id: str
    items: Tuple[PaymentMetadataItem, ...] = ()


@dataclass(frozen=True)
class Payment:
    """One ledger row: a payment attempt or a refund against one."""

    payment_id: PaymentId
    order_id: str
    user_id: str
    amount: Money
    payment_method: PaymentMethod
    payment_gateway: PaymentGatewayName
    metadata: PaymentMetadata
    initiated_at: datetime
    expires_at: datetime
    transaction_type: TransactionType = TransactionType.PAYMENT
    status: TransactionStatus = TransactionStatus.PENDING
    gateway_response: GatewayResponse = field(default_factory=GatewayResponse)
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    last_attempt_at: Optional[datetime] = None
    refundable_amount: Optional[Money] = None
    refunded_amount: Optional[Money] = None
    notes: Optional[str] = None
    version: int = 0

    def __post_init__(self) -> None:
        zero = Money.zero(self.amount.currency)
        if self.refundable_amount is None:
            object.__setattr__(self, "refundable_amount", zero)
        if self.refunded_amount is None:
            object.__setattr__(self, "refunded_amount", zero)

    @property
    def currency(self) -> str:
        return self.amount.currency

    @property
    def is_successful(self) -> bool:
        return self.status is TransactionStatus.SUCCESS

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_TRANSACTION_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.status in OPEN_TRANSACTION_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_pending

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    @property
    def can_be_refunded(self) -> bool:
        return (
            self.status is TransactionStatus.SUCCESS
            and self.transaction_type is TransactionType.PAYMENT
            and self.refundable_amount.amount > 0
        )

    # ---- transitions (each returns a new Payment) ---------------------------

    def with_gateway_response(self, response: GatewayResponse) -> "Payment":
        return replace(self, gateway_response=self.gateway_response.merged(response))

    def marked_successful(
        self, now: datetime, response: Optional[GatewayResponse] = None
    ) -> "Payment":
        merged = self.gateway_response.merged(response or GatewayResponse())
        return replace(
            self,
            status=TransactionStatus.SUCCESS,
            completed_at=now,
            gateway_response=merged,
            refundable_amount=self.amount - self.refunded_amount,
        )

    def marked_failed(
        self,
        now: datetime,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.FAILED,
    ) -> "Payment":
        merged = self.gateway_response.merged(
            GatewayResponse(error_code=error_code, error_message=error_message)
        )
        return replace(self, status=status, failed_at=now, gateway_response=merged)

    def marked_processing(self, now: datetime, response: GatewayResponse) -> "Payment":
        """A non-final gateway notification; never fails the row."""
        return replace(
            self,
            status=TransactionStatus.PROCESSING,
            last_attempt_at=now,
            gateway_response=self.gateway_response.merged(response),
        )

    def with_refund_applied(self, refund: Money, refund_id: str) -> "Payment":
        """Caller guarantees ``can_be_refunded`` and ``refund <= refundable_amount``."""
        return replace(
            self,
            refundable_amount=self.refundable_amount - refund,
            refunded_amount=self.refunded_amount + refund,
            gateway_response=replace(
                self.gateway_response, gateway_transaction_id=refund_id
            ),
        )
