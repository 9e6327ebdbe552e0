from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from returns.result import Failure, Result, Success

from vending_fulfillment.core.domain.model.errors import InvalidInput, NotFound, VendingError
from vending_fulfillment.core.domain.model.order import Order, OrderId, OrderStatus
from vending_fulfillment.core.ports.inbound.order import (
    ListOrdersQuery,
    OrderItemView,
    OrderQueryUseCase,
    OrderStats,
    OrderSummaryView,
)
from vending_fulfillment.core.ports.outbound.orders import OrderRepository

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class OrderQueryDeps:
    orders: OrderRepository


@dataclass(frozen=True)
class OrderQueryService(OrderQueryUseCase):
    deps: OrderQueryDeps

    def get_order_summary(
        self, order_id: str, user_id: Optional[str] = None
    ) -> Result[OrderSummaryView, VendingError]:
        if not order_id or not order_id.strip():
            return Failure(InvalidInput("order_id is required"))
        found = self.deps.orders.get(OrderId(order_id))
        if isinstance(found, Failure):
            return found
        order = found.unwrap()
        if user_id is not None and order.user_id != user_id:
            return Failure(NotFound(message="order not found", entity="order", key=order_id))
        return Success(_to_summary(order))

    def list_orders(self, query: ListOrdersQuery) -> Result[Sequence[Order], VendingError]:
        if query.offset < 0:
            return Failure(InvalidInput("offset must be >= 0"))
        if query.limit <= 0:
            return Failure(InvalidInput("limit must be > 0"))
        if query.limit > 100:
            return Failure(InvalidInput("limit must be <= 100"))
        if query.sort_by not in {"order_date", "total_amount"}:
            return Failure(InvalidInput("sort_by must be one of: order_date, total_amount"))
        if query.sort_dir not in {"asc", "desc"}:
            return Failure(InvalidInput("sort_dir must be 'asc' or 'desc'"))

        status: OrderStatus | None = None
        if query.status is not None:
            try:
                status = OrderStatus(query.status)
            except ValueError:
                return Failure(InvalidInput(f"unknown order status: {query.status}"))

        return self.deps.orders.list(
            query.offset,
            query.limit,
            user_id=query.user_id,
            machine_id=query.machine_id,
            status=status,
            sort_by=query.sort_by,
            sort_dir=query.sort_dir,
        )

    def get_order_stats(
        self, user_id: Optional[str] = None, machine_id: Optional[str] = None
    ) -> Result[OrderStats, VendingError]:
        return self.deps.orders.find(user_id=user_id, machine_id=machine_id).map(
            _stats
        )


def _to_summary(order: Order) -> OrderSummaryView:
    return OrderSummaryView(
        order_id=order.order_id.value,
        order_status=order.order_status,
        payment_status=order.payment_info.payment_status,
        total_items=order.total_items,
        subtotal=order.subtotal,
        tax=order.tax,
        total_amount=order.total_amount,
        order_date=order.order_date,
        estimated_dispense_time=order.delivery_info.estimated_dispense_time,
        actual_dispense_time=order.delivery_info.actual_dispense_time,
        machine_id=order.delivery_info.machine_id,
        machine_name=order.delivery_info.machine_name,
        location=order.delivery_info.location,
        items=tuple(
            OrderItemView(
                product_name=it.product_name,
                quantity=it.quantity,
                unit_price=it.unit_price,
                total_price=it.total_price,
                dispensed=it.dispensed,
                dispensed_at=it.dispensed_at,
            )
            for it in order.items
        ),
        can_be_cancelled=order.can_be_cancelled,
        is_completed=order.is_completed,
    )


def _stats(orders: Sequence[Order]) -> OrderStats:
    if not orders:
        return OrderStats()
    by_status = Counter(o.order_status.value for o in orders)
    revenue = sum((o.total_amount.amount for o in orders), Decimal("0"))
    avg = (revenue / len(orders)).quantize(_CENT, rounding=ROUND_HALF_UP)
    return OrderStats(
        total_orders=len(orders),
        total_revenue=revenue.quantize(_CENT, rounding=ROUND_HALF_UP),
        avg_order_value=avg,
        pending_orders=by_status.get(OrderStatus.PENDING.value, 0),
        completed_orders=by_status.get(OrderStatus.COMPLETED.value, 0),
        cancelled_orders=by_status.get(OrderStatus.CANCELLED.value, 0),
        by_status=dict(by_status),
    )
