from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional, Protocol, Tuple

from returns.result import Result

from vending_fulfillment.core.domain.model.cart import Cart, CartItem
from vending_fulfillment.core.domain.model.common import Money
from vending_fulfillment.core.domain.model.errors import VendingError


@dataclass(frozen=True)
class AddCartItemCommand:
    user_id: str
    product_id: str
    machine_id: str
    slot_number: str
    quantity: int


@dataclass(frozen=True)
class CartLineRef:
    user_id: str
    product_id: str
    machine_id: str
    slot_number: str


@dataclass(frozen=True)
class InvalidCartLine:
    item: CartItem
    reason: str
    available_quantity: Optional[int] = None
    old_price: Optional[Money] = None
    new_price: Optional[Money] = None


@dataclass(frozen=True)
class CartValidation:
    is_valid: bool
    invalid_items: Tuple[InvalidCartLine, ...] = ()
    valid_items: Tuple[CartItem, ...] = ()
    cart: Optional[Cart] = None


@dataclass(frozen=True)
class CartSummary:
    is_empty: bool
    total_items: int
    subtotal: Money
    tax: Money
    final_amount: Money
    items: Tuple[CartItem, ...] = ()
    items_by_machine: Mapping[str, Tuple[CartItem, ...]] = field(default_factory=dict)
    last_updated: Optional[datetime] = None


class CartUseCase(Protocol):
    def get_or_create_cart(self, user_id: str) -> Result[Cart, VendingError]: ...

    def add_item(self, command: AddCartItemCommand) -> Result[Cart, VendingError]: ...

    def update_item_quantity(
        self, ref: CartLineRef, quantity: int
    ) -> Result[Cart, VendingError]: ...

    def remove_item(self, ref: CartLineRef) -> Result[Cart, VendingError]: ...

    def clear(self, user_id: str) -> Result[Cart, VendingError]: ...

    def validate(self, user_id: str) -> Result[CartValidation, VendingError]: ...

    def summarize(self, user_id: str) -> Result[CartSummary, VendingError]: ...
