from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from vending_fulfillment.core.domain.model.common import Money, new_reference
from vending_fulfillment.core.domain.model.machine import Location


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    DISPENSING = "dispensing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ORDER_STATUSES


TERMINAL_ORDER_STATUSES = frozenset(
    {
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
        OrderStatus.REFUNDED,
    }
)

CANCELLABLE_ORDER_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}
)


class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


@dataclass(frozen=True)
class OrderId:
    value: str

    @staticmethod
    def new() -> "OrderId":
        return OrderId(new_reference("ORD", 5))


@dataclass(frozen=True)
class OrderItem:
    product_id: str
    product_name: str
    product_description: str
    machine_id: str
    machine_name: str
    slot_number: str
    quantity: int
    unit_price: Money
    dispensed: bool = False
    dispensed_at: Optional[datetime] = None

    @property
    def total_price(self) -> Money:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class PaymentInfo:
    payment_method: str
    payment_gateway: str
    paid_amount: Money
    payment_status: OrderPaymentStatus = OrderPaymentStatus.PENDING
    payment_id: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_date: Optional[datetime] = None


@dataclass(frozen=True)
class DeliveryInfo:
    machine_id: str
    machine_name: str
    location: Location
    estimated_dispense_time: datetime
    actual_dispense_time: Optional[datetime] = None


@dataclass(frozen=True)
class Order:
    order_id: OrderId
    user_id: str
    items: Tuple[OrderItem, ...]
    subtotal: Money
    tax: Money
    total_amount: Money
    payment_info: PaymentInfo
    delivery_info: DeliveryInfo
    order_date: datetime
    order_status: OrderStatus = OrderStatus.PENDING
    completed_date: Optional[datetime] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    version: int = 0

    @property
    def total_items(self) -> int:
        return sum(it.quantity for it in self.items)

    @property
    def is_terminal(self) -> bool:
        return self.order_status.is_terminal

    @property
    def is_completed(self) -> bool:
        return self.order_status is OrderStatus.COMPLETED

    @property
    def any_dispensed(self) -> bool:
        return any(it.dispensed for it in self.items)

    @property
    def can_be_cancelled(self) -> bool:
        return self.order_status in CANCELLABLE_ORDER_STATUSES and not self.any_dispensed

    @property
    def is_payment_successful(self) -> bool:
        return self.payment_info.payment_status is OrderPaymentStatus.COMPLETED

    def undispensed_items(self) -> Tuple[OrderItem, ...]:
        return tuple(it for it in self.items if not it.dispensed)

    # ---- transitions (each returns a new Order) ------------------------------

    def with_status(
        self, status: OrderStatus, now: datetime, reason: Optional[str] = None
    ) -> "Order":
        """Caller is responsible for refusing to leave a terminal state."""
        changes: dict = {"order_status": status}
        if status is OrderStatus.COMPLETED:
            changes["completed_date"] = now
            if self.delivery_info.actual_dispense_time is None:
                changes["delivery_info"] = replace(
                    self.delivery_info, actual_dispense_time=now
                )
        elif status is OrderStatus.CANCELLED and reason:
            changes["cancel_reason"] = reason
        elif status is OrderStatus.REFUNDED and reason:
            changes["refund_reason"] = reason
        return replace(self, **changes)

    def with_payment_status(
        self,
        status: OrderPaymentStatus,
        now: datetime,
        transaction_id: Optional[str] = None,
    ) -> "Order":
        info = replace(self.payment_info, payment_status=status)
        if status is OrderPaymentStatus.COMPLETED:
            info = replace(info, payment_date=now)
            if transaction_id:
                info = replace(info, transaction_id=transaction_id)
        return replace(self, payment_info=info)

    def with_payment_id(self, payment_id: str) -> "Order":
        return replace(self, payment_info=replace(self.payment_info, payment_id=payment_id))

    def with_item_dispensed(
        self, product_id: str, slot_number: str, now: datetime
    ) -> Optional["Order"]:
        """None when no item matches."""
        index = next(
            (
                i
                for i, it in enumerate(self.items)
                if it.product_id == product_id and it.slot_number == slot_number
            ),
            None,
        )
        if index is None:
            return None
        items = list(self.items)
        items[index] = replace(items[index], dispensed=True, dispensed_at=now)
        return replace(self, items=tuple(items))

    def bumped(self) -> "Order":
        return replace(self, version=self.version + 1)
