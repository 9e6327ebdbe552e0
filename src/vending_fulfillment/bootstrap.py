from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

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
from vending_fulfillment.config import Settings
from vending_fulfillment.core.domain.model.common import Money
from vending_fulfillment.core.domain.model.machine import (
    Location,
    Product,
    ProductSlot,
    VendingMachine,
)
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


@dataclass(frozen=True)
class UseCases:
    cart: CartService
    orders: OrderService
    order_queries: OrderQueryService
    payments: PaymentService
    inventory: InventoryService


def demo_catalog(currency: str = "INR") -> Tuple[Tuple[Product, ...], Tuple[VendingMachine, ...]]:
    cola = Product("P-COLA", "Cola 300ml", Money.of("40.00", currency), "Chilled soft drink")
    chips = Product("P-CHIPS", "Salted Chips", Money.of("20.00", currency), "Potato chips 50g")
    water = Product("P-WATER", "Mineral Water", Money.of("25.00", currency), "1 litre bottle")

    lobby = VendingMachine(
        machine_id="VM-001",
        name="Lobby Machine",
        location=Location("MG Road Metro, Gate 2", "Bengaluru", "KA", "Near ticket counter"),
        slots=(
            ProductSlot("A1", cola.product_id, 10, 10, cola.price),
            ProductSlot("A2", chips.product_id, 5, 10, chips.price),
        ),
    )
    campus = VendingMachine(
        machine_id="VM-002",
        name="Campus Machine",
        location=Location("Block C, Tech Park", "Bengaluru", "KA"),
        slots=(ProductSlot("B1", water.product_id, 8, 12, water.price),),
    )
    return (cola, chips, water), (lobby, campus)


def build_usecases(settings: Optional[Settings] = None) -> UseCases:
    settings = settings or Settings()
    products, machines = demo_catalog(settings.currency)

    catalog = InMemoryProductCatalog.of(products)
    store = InMemoryMachineStore.of(machines)
    carts = InMemoryCartRepository()
    orders = InMemoryOrderRepository()
    payments = InMemoryPaymentRepository()
    gateways = StaticGatewayRegistry(
        adapters={
            "razorpay": RazorpayGateway(key_id=settings.razorpay_key_id),
            "stripe": StripeGateway(),
            "cash": CashGateway(),
        },
        fallback=MockGateway(base_url=settings.mock_gateway_url),
    )

    inventory = InventoryService(InventoryDeps(machines=store))
    cart = CartService(
        CartDeps(
            carts=carts,
            machines=store,
            products=catalog,
            tax_rate=settings.tax_rate,
            cart_ttl=settings.cart_ttl,
            currency=settings.currency,
        )
    )
    order_service = OrderService(
        OrderDeps(
            orders=orders,
            carts=carts,
            machines=store,
            products=catalog,
            inventory=inventory,
            tax_rate=settings.tax_rate,
            dispense_eta=settings.dispense_eta,
            cart_ttl=settings.cart_ttl,
        )
    )
    order_queries = OrderQueryService(OrderQueryDeps(orders=orders))
    payment_service = PaymentService(
        PaymentDeps(
            payments=payments,
            orders=order_service,
            gateways=gateways,
            payment_ttl=settings.payment_ttl,
            max_attempts=settings.payment_max_attempts,
        )
    )

    return UseCases(
        cart=cart,
        orders=order_service,
        order_queries=order_queries,
        payments=payment_service,
        inventory=inventory,
    )
