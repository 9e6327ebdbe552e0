from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from returns.result import Failure, Result, Success

from vending_fulfillment.core.domain.model.cart import CART_TTL, Cart
from vending_fulfillment.core.domain.model.common import fold_money, now_utc
from vending_fulfillment.core.domain.model.errors import (
    ConcurrentModification,
    InvalidInput,
    InvalidOperation,
    NotFound,
    ValidationFailed,
    VendingError,
)
from vending_fulfillment.core.domain.model.machine import VendingMachine
from vending_fulfillment.core.domain.model.order import (
    DeliveryInfo,
    Order,
    OrderId,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    PaymentInfo,
)
from vending_fulfillment.core.domain.model.payment import (
    PaymentGatewayName,
    PaymentMethod,
)
from vending_fulfillment.core.domain.service.cart_service import (
    INSUFFICIENT_STOCK,
    MACHINE_UNAVAILABLE,
    check_line,
)
from vending_fulfillment.core.domain.service.inventory_service import (
    InventoryService,
    RestorationReport,
    SlotLine,
)
from vending_fulfillment.core.domain.service.pricing import TAX_RATE, with_tax
from vending_fulfillment.core.ports.inbound.cart import InvalidCartLine
from vending_fulfillment.core.ports.inbound.order import (
    CreateOrderCommand,
    OrderUseCase,
    OrderPaymentSync,
)
from vending_fulfillment.core.ports.outbound.carts import CartRepository
from vending_fulfillment.core.ports.outbound.machines import MachineStore, ProductCatalog
from vending_fulfillment.core.ports.outbound.orders import OrderRepository

logger = logging.getLogger(__name__)

DISPENSE_ETA = timedelta(minutes=5)
MAX_WRITE_ATTEMPTS = 3
PAYMENT_FAILED_REASON = "Payment failed"

# Change functions return the order unchanged (same object) to signal a no-op.
OrderChange = Callable[[Order], Result[Order, VendingError]]


@dataclass(frozen=True)
class OrderDeps:
    orders: OrderRepository
    carts: CartRepository
    machines: MachineStore
    products: ProductCatalog
    inventory: InventoryService
    tax_rate: Decimal = TAX_RATE
    dispense_eta: timedelta = DISPENSE_ETA
    cart_ttl: timedelta = CART_TTL
    clock: Callable[[], datetime] = now_utc


@dataclass(frozen=True)
class OrderService(OrderUseCase, OrderPaymentSync):
    """
    Order lifecycle: cart -> order conversion with stock reservation, status
    transitions, and stock compensation.

    Every write is a version-checked replace. Stock is restored only by the
    call whose write moved the order into ``cancelled``, so concurrent
    cancellations (user cancel vs. failed-payment webhook) restore once.
    """

    deps: OrderDeps

    # ---- creation ----------------------------------------------------------

    def create_order(self, command: CreateOrderCommand) -> Result[Order, VendingError]:
        v = _validate_create(command)
        if isinstance(v, Failure):
            return v

        found = self.deps.carts.get_active(command.user_id)
        if isinstance(found, Failure):
            return found
        cart = found.unwrap()
        now = self.deps.clock()
        if cart is None or cart.is_empty or cart.is_expired(now):
            return Failure(InvalidOperation("cart is empty"))

        snapshot = self._snapshot(cart)
        if isinstance(snapshot, Failure):
            return snapshot
        items, machines = snapshot.unwrap()

        order = self._build_order(command, items, machines, now)
        lines = tuple(
            SlotLine(it.machine_id, it.slot_number, it.product_id, it.quantity)
            for it in order.items
        )

        reserved = self.deps.inventory.reserve_all(lines)
        if isinstance(reserved, Failure):
            logger.info(
                "order for user %s rejected during reservation: %s",
                command.user_id,
                reserved.failure(),
            )
            return reserved

        added = self.deps.orders.add(order)
        if isinstance(added, Failure):
            self._compensate(lines, "order insert failed")
            return added

        cleared = self.deps.carts.save(cart.cleared(now, self.deps.cart_ttl))
        if isinstance(cleared, Failure):
            logger.error(
                "order %s created but cart of user %s was not cleared: %s",
                order.order_id.value,
                command.user_id,
                cleared.failure(),
            )

        created = added.unwrap()
        logger.info(
            "order %s created for user %s: %d item(s), total %s %s",
            created.order_id.value,
            created.user_id,
            created.total_items,
            created.total_amount.amount,
            created.total_amount.currency,
        )
        return Success(created)

    # ---- reads -------------------------------------------------------------

    def get_order(
        self, order_id: str, user_id: Optional[str] = None
    ) -> Result[Order, VendingError]:
        if not order_id or not order_id.strip():
            return Failure(InvalidInput("order_id is required"))
        found = self.deps.orders.get(OrderId(order_id))
        if isinstance(found, Failure):
            return found
        order = found.unwrap()
        if user_id is not None and order.user_id != user_id:
            return Failure(NotFound(message="order not found", entity="order", key=order_id))
        return Success(order)

    # ---- transitions -------------------------------------------------------

    def update_order_status(
        self, order_id: str, status: str, reason: Optional[str] = None
    ) -> Result[Order, VendingError]:
        parsed = _parse_status(status)
        if isinstance(parsed, Failure):
            return parsed
        target = parsed.unwrap()
        now = self.deps.clock()

        def change(order: Order) -> Result[Order, VendingError]:
            if order.is_terminal:
                return Failure(
                    InvalidOperation(
                        f"order {order.order_id.value} is already {order.order_status.value}"
                    )
                )
            return Success(order.with_status(target, now, reason))

        return self._apply(order_id, change)

    def cancel_order(
        self, order_id: str, user_id: str, reason: str
    ) -> Result[Order, VendingError]:
        now = self.deps.clock()

        def change(order: Order) -> Result[Order, VendingError]:
            if not order.can_be_cancelled:
                return Failure(InvalidOperation("order cannot be cancelled at this stage"))
            return Success(order.with_status(OrderStatus.CANCELLED, now, reason))

        return self._apply(order_id, change, user_id=user_id)

    def mark_item_dispensed(
        self, order_id: str, product_id: str, slot_number: str
    ) -> Result[Order, VendingError]:
        now = self.deps.clock()

        def change(order: Order) -> Result[Order, VendingError]:
            if order.order_status in (
                OrderStatus.CANCELLED,
                OrderStatus.FAILED,
                OrderStatus.REFUNDED,
            ):
                return Failure(
                    InvalidOperation(
                        f"cannot dispense from a {order.order_status.value} order"
                    )
                )
            for it in order.items:
                if it.product_id == product_id and it.slot_number == slot_number and it.dispensed:
                    return Success(order)
            updated = order.with_item_dispensed(product_id, slot_number, now)
            if updated is None:
                return Failure(
                    NotFound(
                        message="item not found in order",
                        entity="order_item",
                        key=f"{product_id}/{slot_number}",
                    )
                )
            return Success(updated)

        return self._apply(order_id, change)

    def attach_payment(self, order_id: str, payment_id: str) -> Result[Order, VendingError]:
        def change(order: Order) -> Result[Order, VendingError]:
            if order.payment_info.payment_id == payment_id:
                return Success(order)
            return Success(order.with_payment_id(payment_id))

        return self._apply(order_id, change)

    def update_payment_status(
        self,
        order_id: str,
        payment_status: OrderPaymentStatus,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> Result[Order, VendingError]:
        """
        Ledger callback. Safe to replay: every branch re-checks the stored
        state and degrades to a no-op once the effect is already present.

        A failure never overrides a completed payment, and when ``payment_id``
        is given it only applies while that row is the order's live attempt.
        """
        now = self.deps.clock()

        def change(order: Order) -> Result[Order, VendingError]:
            current = order.payment_info.payment_status
            if payment_status is OrderPaymentStatus.COMPLETED:
                updated = order
                if current is not OrderPaymentStatus.COMPLETED:
                    updated = updated.with_payment_status(payment_status, now, transaction_id)
                if updated.order_status is OrderStatus.PENDING:
                    updated = updated.with_status(OrderStatus.CONFIRMED, now)
                if updated is not order and order.order_status is OrderStatus.CANCELLED:
                    logger.warning(
                        "payment settled for cancelled order %s; refund required",
                        order.order_id.value,
                    )
                return Success(updated)

            if payment_status is OrderPaymentStatus.FAILED:
                if current is OrderPaymentStatus.COMPLETED:
                    logger.warning(
                        "order %s already paid; payment failure ignored",
                        order.order_id.value,
                    )
                    return Success(order)
                live = order.payment_info.payment_id
                if payment_id is not None and live is not None and live != payment_id:
                    logger.info(
                        "order %s: failure of superseded payment %s ignored (live %s)",
                        order.order_id.value,
                        payment_id,
                        live,
                    )
                    return Success(order)
                updated = order
                if current is not OrderPaymentStatus.FAILED:
                    updated = updated.with_payment_status(payment_status, now)
                if not updated.is_terminal:
                    updated = updated.with_status(
                        OrderStatus.CANCELLED, now, reason or PAYMENT_FAILED_REASON
                    )
                return Success(updated)

            if current is payment_status:
                return Success(order)
            return Success(order.with_payment_status(payment_status, now, transaction_id))

        return self._apply(order_id, change)

    # ---- internals ---------------------------------------------------------

    def _apply(
        self, order_id: str, change: OrderChange, user_id: Optional[str] = None
    ) -> Result[Order, VendingError]:
        """Load, change, compare-and-set; re-evaluate on a lost race."""
        last: Result[Order, VendingError] = Failure(
            ConcurrentModification(message="order write contention", entity="order", key=order_id)
        )
        for _ in range(MAX_WRITE_ATTEMPTS):
            loaded = self.get_order(order_id, user_id)
            if isinstance(loaded, Failure):
                return loaded
            before = loaded.unwrap()

            changed = change(before)
            if isinstance(changed, Failure):
                return changed
            after = changed.unwrap()
            if after is before:
                return Success(before)

            last = self.deps.orders.replace(after)
            if isinstance(last, Success):
                stored = last.unwrap()
                self._after_transition(before, stored)
                return last
            if not isinstance(last.failure(), ConcurrentModification):
                return last
            logger.info("order %s changed concurrently, re-evaluating", order_id)
        return last

    def _after_transition(self, before: Order, after: Order) -> None:
        if before.order_status is after.order_status:
            return
        logger.info(
            "order %s: %s -> %s",
            after.order_id.value,
            before.order_status.value,
            after.order_status.value,
        )
        if after.order_status is OrderStatus.CANCELLED:
            self._restore_inventory(after)

    def _restore_inventory(self, order: Order) -> RestorationReport:
        lines = [
            SlotLine(it.machine_id, it.slot_number, it.product_id, it.quantity)
            for it in order.undispensed_items()
        ]
        report = self.deps.inventory.restore_all(lines)
        if not report.complete:
            logger.warning(
                "order %s: %d of %d line(s) could not be restocked",
                order.order_id.value,
                len(report.skipped),
                len(lines),
            )
        return report

    def _compensate(self, lines: Tuple[SlotLine, ...], why: str) -> None:
        logger.warning("releasing %d reserved line(s): %s", len(lines), why)
        self.deps.inventory.restore_all(lines)

    def _snapshot(
        self, cart: Cart
    ) -> Result[Tuple[Tuple[OrderItem, ...], Dict[str, VendingMachine]], VendingError]:
        machines: Dict[str, Optional[VendingMachine]] = {}
        problems: List[str] = []
        items: List[OrderItem] = []

        for cart_item in cart.items:
            if cart_item.machine_id not in machines:
                found = self.deps.machines.get(cart_item.machine_id)
                if isinstance(found, Failure) and not isinstance(found.failure(), NotFound):
                    return found
                machines[cart_item.machine_id] = (
                    found.unwrap() if isinstance(found, Success) else None
                )
            machine = machines[cart_item.machine_id]

            problem = check_line(cart_item, machine, check_price=False)
            if problem is not None:
                problems.append(_describe(problem))
                continue

            product = self.deps.products.get(cart_item.product_id)
            description = (
                product.unwrap().description if isinstance(product, Success) else ""
            )
            items.append(
                OrderItem(
                    product_id=cart_item.product_id,
                    product_name=cart_item.product_name,
                    product_description=description or cart_item.product_name,
                    machine_id=cart_item.machine_id,
                    machine_name=machine.name,
                    slot_number=cart_item.slot_number,
                    quantity=cart_item.quantity,
                    unit_price=cart_item.unit_price,
                )
            )

        if problems:
            return Failure(
                ValidationFailed(message="order validation failed", problems=tuple(problems))
            )
        if not items:
            return Failure(InvalidOperation("no valid items in cart"))
        resolved = {k: m for k, m in machines.items() if m is not None}
        return Success((tuple(items), resolved))

    def _build_order(
        self,
        command: CreateOrderCommand,
        items: Tuple[OrderItem, ...],
        machines: Dict[str, VendingMachine],
        now: datetime,
    ) -> Order:
        currency = items[0].unit_price.currency
        subtotal = fold_money((it.total_price for it in items), currency=currency)
        tax, total = with_tax(subtotal, self.deps.tax_rate)

        # single delivery point: the machine of the first line
        delivery_machine = machines[items[0].machine_id]
        if len(machines) > 1:
            logger.warning(
                "cart of user %s spans %d machines; delivering from %s only",
                command.user_id,
                len(machines),
                delivery_machine.machine_id,
            )

        return Order(
            order_id=OrderId.new(),
            user_id=command.user_id,
            items=items,
            subtotal=subtotal,
            tax=tax,
            total_amount=total,
            payment_info=PaymentInfo(
                payment_method=command.payment_method,
                payment_gateway=command.payment_gateway,
                paid_amount=total,
            ),
            delivery_info=DeliveryInfo(
                machine_id=delivery_machine.machine_id,
                machine_name=delivery_machine.name,
                location=delivery_machine.location,
                estimated_dispense_time=now + self.deps.dispense_eta,
            ),
            order_date=now,
            notes=command.notes,
        )


# ---- pure helpers ----------------------------------------------------------


def _describe(problem: InvalidCartLine) -> str:
    item = problem.item
    if problem.reason == MACHINE_UNAVAILABLE:
        return f"Machine {item.machine_id} not found"
    if problem.reason == INSUFFICIENT_STOCK:
        return (
            f"Insufficient stock for {item.product_name}. "
            f"Available: {problem.available_quantity}, Required: {item.quantity}"
        )
    return f"Product {item.product_name} not available in slot {item.slot_number}"


def _parse_status(status: str) -> Result[OrderStatus, VendingError]:
    try:
        return Success(OrderStatus(status))
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        return Failure(InvalidInput(f"status must be one of: {allowed}"))


def _validate_create(cmd: CreateOrderCommand) -> Result[CreateOrderCommand, VendingError]:
    if not cmd.user_id.strip():
        return Failure(InvalidInput("user_id is required"))
    if cmd.payment_method not in {m.value for m in PaymentMethod}:
        return Failure(InvalidInput(f"unsupported payment_method: {cmd.payment_method}"))
    if cmd.payment_gateway not in {g.value for g in PaymentGatewayName}:
        return Failure(InvalidInput(f"unsupported payment_gateway: {cmd.payment_gateway}"))
    if cmd.notes is not None and len(cmd.notes) > 500:
        return Failure(InvalidInput("notes cannot exceed 500 characters"))
    return Success(cmd)
