from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from returns.result import Result

from vending_fulfillment.core.domain.model.common import Money
from vending_fulfillment.core.domain.model.errors import VendingError
from vending_fulfillment.core.domain.model.payment import (
    Payment,
    PaymentId,
    TransactionType,
)


class PaymentRepository(Protocol):
    """Append-style ledger. Rows are only ever transitioned, never repurposed."""

    def add(self, payment: Payment) -> Result[Payment, VendingError]: ...

    def get(self, payment_id: PaymentId) -> Result[Payment, VendingError]: ...

    def replace(self, payment: Payment) -> Result[Payment, VendingError]:
        """Compare-and-set on ``payment.version``, same contract as orders."""
        ...

    def apply_refund(
        self, payment_id: PaymentId, amount: Money, refund_id: str
    ) -> Result[Payment, VendingError]:
        """
        Atomically moves ``amount`` from refundable to refunded iff the row is
        still refundable and holds at least ``amount``.
        """
        ...

    def find_by_order(
        self, order_id: str, transaction_type: TransactionType | None = None
    ) -> Result[Sequence[Payment], VendingError]: ...

    def find(
        self,
        user_id: str | None = None,
        machine_id: str | None = None,
        transaction_type: TransactionType | None = None,
    ) -> Result[Sequence[Payment], VendingError]: ...

    def find_open_expired(self, now: datetime) -> Result[Sequence[Payment], VendingError]:
        """Pending/processing payment-type rows whose ``expires_at`` has passed."""
        ...
