from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Dict, Sequence

from returns.result import Failure, Result, Success

from vending_fulfillment.core.domain.model.errors import (
    ConcurrentModification,
    NotFound,
    PersistenceError,
    VendingError,
)
from vending_fulfillment.core.domain.model.order import Order, OrderId, OrderStatus
from vending_fulfillment.core.ports.outbound.orders import OrderRepository


@dataclass
class InMemoryOrderRepository(OrderRepository):
    _store: Dict[str, Order] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add(self, order: Order) -> Result[Order, VendingError]:
        key = order.order_id.value
        with self._lock:
            if key in self._store:
                return Failure(PersistenceError(message="order_id already exists"))
            self._store[key] = order
            return Success(order)

    def get(self, order_id: OrderId) -> Result[Order, VendingError]:
        with self._lock:
            if order_id.value not in self._store:
                return Failure(
                    NotFound(message="order not found", entity="order", key=order_id.value)
                )
            return Success(self._store[order_id.value])

    def replace(self, order: Order) -> Result[Order, VendingError]:
        key = order.order_id.value
        with self._lock:
            current = self._store.get(key)
            if current is None:
                return Failure(NotFound(message="order not found", entity="order", key=key))
            if current.version != order.version:
                return Failure(
                    ConcurrentModification(
                        message=f"expected version {order.version}, found {current.version}",
                        entity="order",
                        key=key,
                    )
                )
            stored = replace(order, version=order.version + 1)
            self._store[key] = stored
            return Success(stored)

    def list(
        self,
        offset: int,
        limit: int,
        user_id: str | None = None,
        machine_id: str | None = None,
        status: OrderStatus | None = None,
        sort_by: str = "order_date",
        sort_dir: str = "desc",
    ) -> Result[Sequence[Order], VendingError]:
        with self._lock:
            orders = list(self._store.values())  # insertion order

        orders = _filter(orders, user_id, machine_id)
        if status is not None:
            orders = [o for o in orders if o.order_status is status]

        reverse = sort_dir == "desc"

        if sort_by == "order_date":
            orders = sorted(orders, key=lambda o: o.order_date, reverse=reverse)
        elif sort_by == "total_amount":
            orders = sorted(orders, key=lambda o: o.total_amount.amount, reverse=reverse)

        sliced = orders[offset : offset + limit]
        return Success(tuple(sliced))

    def find(
        self, user_id: str | None = None, machine_id: str | None = None
    ) -> Result[Sequence[Order], VendingError]:
        with self._lock:
            orders = list(self._store.values())
        return Success(tuple(_filter(orders, user_id, machine_id)))


def _filter(orders, user_id: str | None, machine_id: str | None) -> list[Order]:
    if user_id is not None:
        orders = [o for o in orders if o.user_id == user_id]
    if machine_id is not None:
        orders = [o for o in orders if o.delivery_info.machine_id == machine_id]
    return list(orders)
