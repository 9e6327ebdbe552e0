from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Sequence

from returns.result import Failure, Result, Success

from vending_fulfillment.core.domain.model.common import Money
from vending_fulfillment.core.domain.model.errors import (
    ConcurrentModification,
    ExceedsRefundable,
    NotFound,
    NotRefundable,
    PersistenceError,
    VendingError,
)
from vending_fulfillment.core.domain.model.payment import (
    Payment,
    PaymentId,
    TransactionType,
)
from vending_fulfillment.core.ports.outbound.payments import PaymentRepository


@dataclass
class InMemoryPaymentRepository(PaymentRepository):
    _store: Dict[str, Payment] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add(self, payment: Payment) -> Result[Payment, VendingError]:
        key = payment.payment_id.value
        with self._lock:
            if key in self._store:
                return Failure(PersistenceError(message="payment_id already exists"))
            self._store[key] = payment
            return Success(payment)

    def get(self, payment_id: PaymentId) -> Result[Payment, VendingError]:
        with self._lock:
            if payment_id.value not in self._store:
                return Failure(_not_found(payment_id.value))
            return Success(self._store[payment_id.value])

    def replace(self, payment: Payment) -> Result[Payment, VendingError]:
        key = payment.payment_id.value
        with self._lock:
            current = self._store.get(key)
            if current is None:
                return Failure(_not_found(key))
            if current.version != payment.version:
                return Failure(
                    ConcurrentModification(
                        message=f"expected version {payment.version}, found {current.version}",
                        entity="payment",
                        key=key,
                    )
                )
            stored = replace(payment, version=payment.version + 1)
            self._store[key] = stored
            return Success(stored)

    def apply_refund(
        self, payment_id: PaymentId, amount: Money, refund_id: str
    ) -> Result[Payment, VendingError]:
        key = payment_id.value
        with self._lock:
            current = self._store.get(key)
            if current is None:
                return Failure(_not_found(key))
            if not current.can_be_refunded:
                return Failure(
                    NotRefundable(message="payment cannot be refunded", payment_id=key)
                )
            if amount.amount > current.refundable_amount.amount:
                return Failure(
                    ExceedsRefundable(
                        message="refund amount exceeds refundable amount",
                        refundable=current.refundable_amount.amount,
                        requested=amount.amount,
                    )
                )
            stored = replace(
                current.with_refund_applied(amount, refund_id),
                version=current.version + 1,
            )
            self._store[key] = stored
            return Success(stored)

    def find_by_order(
        self, order_id: str, transaction_type: TransactionType | None = None
    ) -> Result[Sequence[Payment], VendingError]:
        with self._lock:
            rows = [p for p in self._store.values() if p.order_id == order_id]
        if transaction_type is not None:
            rows = [p for p in rows if p.transaction_type is transaction_type]
        return Success(tuple(rows))

    def find(
        self,
        user_id: str | None = None,
        machine_id: str | None = None,
        transaction_type: TransactionType | None = None,
    ) -> Result[Sequence[Payment], VendingError]:
        with self._lock:
            rows = list(self._store.values())
        if user_id is not None:
            rows = [p for p in rows if p.user_id == user_id]
        if machine_id is not None:
            rows = [p for p in rows if p.metadata.machine_id == machine_id]
        if transaction_type is not None:
            rows = [p for p in rows if p.transaction_type is transaction_type]
        return Success(tuple(rows))

    def find_open_expired(self, now: datetime) -> Result[Sequence[Payment], VendingError]:
        with self._lock:
            rows = [
                p
                for p in self._store.values()
                if p.transaction_type is TransactionType.PAYMENT
                and p.is_pending
                and p.is_expired(now)
            ]
        return Success(tuple(rows))


def _not_found(payment_id: str) -> NotFound:
    return NotFound(message="payment not found", entity="payment", key=payment_id)
