from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from returns.pipeline import flow
from returns.pointfree import bind
from returns.result import Failure, Result, Success

from vending_fulfillment.core.domain.model.cart import CART_TTL, Cart, CartItem, CartLineKey
from vending_fulfillment.core.domain.model.common import DEFAULT_CURRENCY, Money, now_utc
from vending_fulfillment.core.domain.model.errors import (
    InvalidInput,
    NotFound,
    OutOfStock,
    VendingError,
)
from vending_fulfillment.core.domain.model.machine import VendingMachine
from vending_fulfillment.core.domain.service.pricing import TAX_RATE, with_tax
from vending_fulfillment.core.ports.inbound.cart import (
    AddCartItemCommand,
    CartLineRef,
    CartSummary,
    CartUseCase,
    CartValidation,
    InvalidCartLine,
)
from vending_fulfillment.core.ports.outbound.carts import CartRepository
from vending_fulfillment.core.ports.outbound.machines import MachineStore, ProductCatalog

logger = logging.getLogger(__name__)

MACHINE_UNAVAILABLE = "machine unavailable"
SLOT_MISMATCH = "slot no longer has this product"
INSUFFICIENT_STOCK = "insufficient stock"
PRICE_CHANGED = "price changed"


@dataclass(frozen=True)
class CartDeps:
    carts: CartRepository
    machines: MachineStore
    products: ProductCatalog
    tax_rate: Decimal = TAX_RATE
    cart_ttl: timedelta = CART_TTL
    currency: str = DEFAULT_CURRENCY
    clock: Callable[[], datetime] = now_utc


@dataclass(frozen=True)
class AddItemContext:
    user_id: str
    item: CartItem


@dataclass(frozen=True)
class CartService(CartUseCase):
    deps: CartDeps

    def get_or_create_cart(self, user_id: str) -> Result[Cart, VendingError]:
        v = _validate_user(user_id)
        if isinstance(v, Failure):
            return v
        return self.deps.carts.get_active(user_id).bind(
            lambda cart: self._fresh_or_new(user_id, cart)
        )

    def add_item(self, command: AddCartItemCommand) -> Result[Cart, VendingError]:
        return flow(
            command,
            _validate_add,
            bind(self._priced_line),
            bind(self._merge_into_cart),
        )

    def update_item_quantity(
        self, ref: CartLineRef, quantity: int
    ) -> Result[Cart, VendingError]:
        if not _is_int(quantity) or quantity < 0:
            return Failure(InvalidInput("quantity must be a non-negative integer"))

        active = self._active_cart(ref.user_id)
        if isinstance(active, Failure):
            return active
        if quantity == 0:
            return self.remove_item(ref)

        cart = active.unwrap()
        key = _key(ref)
        if cart.find(key) is None:
            return Failure(
                NotFound(
                    message="item not found in cart",
                    entity="cart_item",
                    key=f"{ref.product_id}@{ref.machine_id}/{ref.slot_number}",
                )
            )

        machine = self.deps.machines.get(ref.machine_id)
        if isinstance(machine, Failure):
            return machine
        slot = machine.unwrap().find_slot(ref.slot_number, ref.product_id)
        if slot is None:
            return Failure(
                NotFound(
                    message="product not available in this slot",
                    entity="slot",
                    key=f"{ref.machine_id}/{ref.slot_number}",
                )
            )
        if slot.quantity < quantity:
            return Failure(
                OutOfStock(
                    message=f"insufficient stock, only {slot.quantity} items available",
                    available=slot.quantity,
                )
            )

        now = self.deps.clock()
        return self.deps.carts.save(
            cart.with_quantity(key, quantity, now, self.deps.cart_ttl)
        )

    def remove_item(self, ref: CartLineRef) -> Result[Cart, VendingError]:
        now = self.deps.clock()
        return self._active_cart(ref.user_id).bind(
            lambda cart: self.deps.carts.save(
                cart.without(_key(ref), now, self.deps.cart_ttl)
            )
        )

    def clear(self, user_id: str) -> Result[Cart, VendingError]:
        now = self.deps.clock()
        return self._active_cart(user_id).bind(
            lambda cart: self.deps.carts.save(cart.cleared(now, self.deps.cart_ttl))
        )

    def validate(self, user_id: str) -> Result[CartValidation, VendingError]:
        found = self.deps.carts.get_active(user_id)
        if isinstance(found, Failure):
            return found
        cart = found.unwrap()
        if cart is None or cart.is_empty:
            return Success(CartValidation(is_valid=True, cart=cart))

        invalid: List[InvalidCartLine] = []
        valid: List[CartItem] = []
        for item in cart.items:
            machine = self.deps.machines.get(item.machine_id)
            if isinstance(machine, Failure) and not isinstance(machine.failure(), NotFound):
                return machine
            problem = check_line(
                item,
                machine.unwrap() if isinstance(machine, Success) else None,
                check_price=True,
            )
            if problem is None:
                valid.append(item)
            else:
                invalid.append(problem)

        return Success(
            CartValidation(
                is_valid=not invalid,
                invalid_items=tuple(invalid),
                valid_items=tuple(valid),
                cart=cart,
            )
        )

    def summarize(self, user_id: str) -> Result[CartSummary, VendingError]:
        return self.get_or_create_cart(user_id).map(
            lambda cart: _summary(cart, self.deps.tax_rate)
        )

    # ---- internals ---------------------------------------------------------

    def _priced_line(
        self, command: AddCartItemCommand
    ) -> Result[AddItemContext, VendingError]:
        product = self.deps.products.get(command.product_id)
        if isinstance(product, Failure):
            return product
        machine = self.deps.machines.get(command.machine_id)
        if isinstance(machine, Failure):
            return machine

        slot = machine.unwrap().find_slot(command.slot_number, command.product_id)
        if slot is None:
            return Failure(
                NotFound(
                    message="product not available in this slot",
                    entity="slot",
                    key=f"{command.machine_id}/{command.slot_number}",
                )
            )
        if slot.quantity < command.quantity:
            return Failure(
                OutOfStock(
                    message=f"insufficient stock, only {slot.quantity} items available",
                    available=slot.quantity,
                )
            )

        item = CartItem(
            product_id=command.product_id,
            product_name=product.unwrap().name,
            machine_id=command.machine_id,
            slot_number=command.slot_number,
            quantity=command.quantity,
            unit_price=slot.price,
            added_at=self.deps.clock(),
        )
        return Success(AddItemContext(user_id=command.user_id, item=item))

    def _merge_into_cart(self, ctx: AddItemContext) -> Result[Cart, VendingError]:
        return self.get_or_create_cart(ctx.user_id).bind(
            lambda cart: self.deps.carts.save(
                cart.add_item(ctx.item, ctx.item.added_at, self.deps.cart_ttl)
            )
        )

    def _fresh_or_new(
        self, user_id: str, cart: Optional[Cart]
    ) -> Result[Cart, VendingError]:
        now = self.deps.clock()
        if cart is not None and not cart.is_expired(now):
            return Success(cart)
        if cart is not None:
            logger.info("cart for user %s expired at %s", user_id, cart.expires_at)
            retired = self.deps.carts.save(cart.deactivated())
            if isinstance(retired, Failure):
                return retired
        return self.deps.carts.save(
            Cart.new(user_id, now, self.deps.cart_ttl, self.deps.currency)
        )

    def _active_cart(self, user_id: str) -> Result[Cart, VendingError]:
        found = self.deps.carts.get_active(user_id)
        if isinstance(found, Failure):
            return found
        cart = found.unwrap()
        if cart is None or cart.is_expired(self.deps.clock()):
            return Failure(NotFound(message="cart not found", entity="cart", key=user_id))
        return Success(cart)


# ---- pure helpers ----------------------------------------------------------


def check_line(
    item: CartItem, machine: Optional[VendingMachine], check_price: bool
) -> Optional[InvalidCartLine]:
    """The reason a cart line can no longer be fulfilled, or None."""
    if machine is None:
        return InvalidCartLine(item=item, reason=MACHINE_UNAVAILABLE)

    slot = machine.find_slot(item.slot_number, item.product_id)
    if slot is None:
        return InvalidCartLine(item=item, reason=SLOT_MISMATCH)

    if slot.quantity < item.quantity:
        return InvalidCartLine(
            item=item, reason=INSUFFICIENT_STOCK, available_quantity=slot.quantity
        )

    if check_price and slot.price != item.unit_price:
        return InvalidCartLine(
            item=item,
            reason=PRICE_CHANGED,
            old_price=item.unit_price,
            new_price=slot.price,
        )
    return None


def group_by_machine(items: Sequence[CartItem]) -> Mapping[str, Tuple[CartItem, ...]]:
    grouped: Dict[str, Tuple[CartItem, ...]] = {}
    for it in items:
        grouped[it.machine_id] = grouped.get(it.machine_id, ()) + (it,)
    return grouped


def _summary(cart: Cart, tax_rate: Decimal) -> CartSummary:
    if cart.is_empty:
        zero = Money.zero(cart.currency)
        return CartSummary(
            is_empty=True, total_items=0, subtotal=zero, tax=zero, final_amount=zero
        )
    subtotal = cart.total_amount
    tax, final_amount = with_tax(subtotal, tax_rate)
    return CartSummary(
        is_empty=False,
        total_items=cart.total_items,
        subtotal=subtotal,
        tax=tax,
        final_amount=final_amount,
        items=cart.items,
        items_by_machine=group_by_machine(cart.items),
        last_updated=cart.last_updated,
    )


def _key(ref: CartLineRef) -> CartLineKey:
    return CartLineKey(ref.product_id, ref.machine_id, ref.slot_number)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_user(user_id: str) -> Result[str, VendingError]:
    if not user_id or not user_id.strip():
        return Failure(InvalidInput("user_id is required"))
    return Success(user_id)


def _validate_add(cmd: AddCartItemCommand) -> Result[AddCartItemCommand, VendingError]:
    if not cmd.user_id.strip():
        return Failure(InvalidInput("user_id is required"))
    if not cmd.product_id.strip():
        return Failure(InvalidInput("product_id is required"))
    if not cmd.machine_id.strip():
        return Failure(InvalidInput("machine_id is required"))
    if not cmd.slot_number.strip():
        return Failure(InvalidInput("slot_number is required"))
    if not _is_int(cmd.quantity) or cmd.quantity <= 0:
        return Failure(InvalidInput("quantity must be a positive integer"))
    return Success(cmd)
