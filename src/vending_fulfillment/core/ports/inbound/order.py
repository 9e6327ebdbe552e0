from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional, Protocol, Sequence, Tuple

from returns.result import Result

from vending_fulfillment.core.domain.model.common import Money
from vending_fulfillment.core.domain.model.errors import VendingError
from vending_fulfillment.core.domain.model.machine import Location
from vending_fulfillment.core.domain.model.order import (
    Order,
    OrderPaymentStatus,
    OrderStatus,
)


@dataclass(frozen=True)
class CreateOrderCommand:
    user_id: str
    payment_method: str
    payment_gateway: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class ListOrdersQuery:
    offset: int = 0
    limit: int = 10
    user_id: Optional[str] = None
    machine_id: Optional[str] = None
    status: Optional[str] = None
    sort_by: str = "order_date"  # order_date | total_amount
    sort_dir: str = "desc"  # asc | desc


@dataclass(frozen=True)
class OrderItemView:
    product_name: str
    quantity: int
    unit_price: Money
    total_price: Money
    dispensed: bool
    dispensed_at: Optional[datetime]


@dataclass(frozen=True)
class OrderSummaryView:
    order_id: str
    order_status: OrderStatus
    payment_status: OrderPaymentStatus
    total_items: int
    subtotal: Money
    tax: Money
    total_amount: Money
    order_date: datetime
    estimated_dispense_time: datetime
    actual_dispense_time: Optional[datetime]
    machine_id: str
    machine_name: str
    location: Location
    items: Tuple[OrderItemView, ...]
    can_be_cancelled: bool
    is_completed: bool


@dataclass(frozen=True)
class OrderStats:
    total_orders: int = 0
    total_revenue: Decimal = Decimal("0.00")
    avg_order_value: Decimal = Decimal("0.00")
    pending_orders: int = 0
    completed_orders: int = 0
    cancelled_orders: int = 0
    by_status: Mapping[str, int] = field(default_factory=dict)


class OrderUseCase(Protocol):
    def create_order(self, command: CreateOrderCommand) -> Result[Order, VendingError]: ...

    def get_order(
        self, order_id: str, user_id: Optional[str] = None
    ) -> Result[Order, VendingError]: ...

    def update_order_status(
        self, order_id: str, status: str, reason: Optional[str] = None
    ) -> Result[Order, VendingError]: ...

    def cancel_order(
        self, order_id: str, user_id: str, reason: str
    ) -> Result[Order, VendingError]: ...

    def mark_item_dispensed(
        self, order_id: str, product_id: str, slot_number: str
    ) -> Result[Order, VendingError]: ...


class OrderQueryUseCase(Protocol):
    def get_order_summary(
        self, order_id: str, user_id: Optional[str] = None
    ) -> Result[OrderSummaryView, VendingError]: ...

    def list_orders(self, query: ListOrdersQuery) -> Result[Sequence[Order], VendingError]: ...

    def get_order_stats(
        self, user_id: Optional[str] = None, machine_id: Optional[str] = None
    ) -> Result[OrderStats, VendingError]: ...


class OrderPaymentSync(Protocol):
    """The slice of the order engine the payment ledger drives."""

    def get_order(
        self, order_id: str, user_id: Optional[str] = None
    ) -> Result[Order, VendingError]: ...

    def attach_payment(self, order_id: str, payment_id: str) -> Result[Order, VendingError]: ...

    def update_payment_status(
        self,
        order_id: str,
        payment_status: OrderPaymentStatus,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> Result[Order, VendingError]: ...
