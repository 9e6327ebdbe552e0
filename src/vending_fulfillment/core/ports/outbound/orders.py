from __future__ import annotations

from typing import Protocol, Sequence

from returns.result import Result

from vending_fulfillment.core.domain.model.errors import VendingError
from vending_fulfillment.core.domain.model.order import Order, OrderId, OrderStatus


class OrderRepository(Protocol):
    def add(self, order: Order) -> Result[Order, VendingError]: ...

    def get(self, order_id: OrderId) -> Result[Order, VendingError]: ...

    def replace(self, order: Order) -> Result[Order, VendingError]:
        """
        Compare-and-set on ``order.version``: stores the order with
        ``version + 1`` only if the stored version still equals
        ``order.version``, otherwise ``ConcurrentModification``.
        """
        ...

    def list(
        self,
        offset: int,
        limit: int,
        user_id: str | None = None,
        machine_id: str | None = None,
        status: OrderStatus | None = None,
        sort_by: str = "order_date",
        sort_dir: str = "desc",
    ) -> Result[Sequence[Order], VendingError]: ...

    def find(
        self, user_id: str | None = None, machine_id: str | None = None
    ) -> Result[Sequence[Order], VendingError]: ...
