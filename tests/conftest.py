from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from vending_fulfillment.adapters.outbound.gateways import (
    CashGateway,
    MockGateway,
    RazorpayGateway,
    StaticGatewayRegistry,
    StripeGateway,
)
from vending_fulfillment.adapters.outbound.in_memory_carts import InMemoryCartRepository
from vending_fulfillment.adapters.outbound.in_memory_machines import (
    InMemoryMachineStore,
    InMemoryProductCatalog,
)
from vending_fulfillment.adapters.outbound.in_memory_orders import InMemoryOrderRepository
from vending_fulfillment.adapters.outbound.in_memory_payments import InMemoryPaymentRepository
from vending_fulfillment.bootstrap import demo_catalog
from vending_fulfillment.core.domain.model.order import Order
from vending_fulfillment.core.domain.service.cart_service import CartDeps, CartService
from vending_fulfillment.core.domain.service.inventory_service import (
    InventoryDeps,
    InventoryService,
)
from vending_fulfillment.core.domain.service.order_query_service import (
    OrderQueryDeps,
    OrderQueryService,
)
from vending_fulfillment.core.domain.service.order_service import OrderDeps, OrderService
from vending_fulfillment.core.domain.service.payment_service import (
    PaymentDeps,
    PaymentService,
)
from vending_fulfillment.core.ports.inbound.cart import AddCartItemCommand
from vending_fulfillment.core.ports.inbound.order import CreateOrderCommand

T0 = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class World:
    clock: FakeClock
    catalog: InMemoryProductCatalog
    machines: InMemoryMachineStore
    carts: InMemoryCartRepository
    orders: InMemoryOrderRepository
    payments: InMemoryPaymentRepository
    mock_gateway: MockGateway
    inventory: InventoryService
    cart: CartService
    order_service: OrderService
    order_queries: OrderQueryService
    payment_service: PaymentService

    def stock(self, machine_id: str, slot_number: str) -> int:
        machine = self.machines.get(machine_id).unwrap()
        for slot in machine.slots:
            if slot.slot_number == slot_number:
                return slot.quantity
        raise KeyError(slot_number)

    def add(self, user_id: str, product_id: str, machine_id: str, slot: str, qty: int):
        return self.cart.add_item(
            AddCartItemCommand(
                user_id=user_id,
                product_id=product_id,
                machine_id=machine_id,
                slot_number=slot,
                quantity=qty,
            )
        )

    def checkout(
        self,
        user_id: str = "u-1",
        lines=(("P-COLA", "VM-001", "A1", 2),),
        gateway: str = "razorpay",
        method: str = "upi",
    ) -> Order:
        for product_id, machine_id, slot, qty in lines:
            self.add(user_id, product_id, machine_id, slot, qty).unwrap()
        return self.order_service.create_order(
            CreateOrderCommand(user_id=user_id, payment_method=method, payment_gateway=gateway)
        ).unwrap()


def build_world(
    machines: InMemoryMachineStore | None = None,
    orders: InMemoryOrderRepository | None = None,
) -> World:
    clock = FakeClock()
    products, demo_machines = demo_catalog()
    catalog = InMemoryProductCatalog.of(products)
    store = machines if machines is not None else InMemoryMachineStore.of(demo_machines)
    if machines is not None:
        for m in demo_machines:
            store.put(m)
    carts = InMemoryCartRepository()
    order_repo = orders if orders is not None else InMemoryOrderRepository()
    payments = InMemoryPaymentRepository()
    mock_gateway = MockGateway()
    gateways = StaticGatewayRegistry(
        adapters={
            "razorpay": RazorpayGateway(),
            "stripe": StripeGateway(),
            "cash": CashGateway(),
        },
        fallback=mock_gateway,
    )

    inventory = InventoryService(InventoryDeps(machines=store))
    cart = CartService(CartDeps(carts=carts, machines=store, products=catalog, clock=clock))
    order_service = OrderService(
        OrderDeps(
            orders=order_repo,
            carts=carts,
            machines=store,
            products=catalog,
            inventory=inventory,
            clock=clock,
        )
    )
    payment_service = PaymentService(
        PaymentDeps(
            payments=payments, orders=order_service, gateways=gateways, clock=clock
        )
    )
    return World(
        clock=clock,
        catalog=catalog,
        machines=store,
        carts=carts,
        orders=order_repo,
        payments=payments,
        mock_gateway=mock_gateway,
        inventory=inventory,
        cart=cart,
        order_service=order_service,
        order_queries=OrderQueryService(OrderQueryDeps(orders=order_repo)),
        payment_service=payment_service,
    )


@pytest.fixture
def world() -> World:
    return build_world()
