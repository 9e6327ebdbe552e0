from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional, Tuple

from vending_fulfillment.core.domain.model.common import DEFAULT_CURRENCY, Money, fold_money

CART_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class CartLineKey:
    product_id: str
    machine_id: str
    slot_number: str


@dataclass(frozen=True)
class CartItem:
    product_id: str
    product_name: str
    machine_id: str
    slot_number: str
    quantity: int
    unit_price: Money
    added_at: datetime

    @property
    def key(self) -> CartLineKey:
        return CartLineKey(self.product_id, self.machine_id, self.slot_number)

    @property
    def total_price(self) -> Money:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Cart:
    user_id: str
    items: Tuple[CartItem, ...]
    created_at: datetime
    last_updated: datetime
    expires_at: datetime
    is_active: bool = True
    currency: str = DEFAULT_CURRENCY

    @staticmethod
    def new(
        user_id: str,
        now: datetime,
        ttl: timedelta = CART_TTL,
        currency: str = DEFAULT_CURRENCY,
    ) -> "Cart":
        return Cart(
            user_id=user_id,
            items=(),
            created_at=now,
            last_updated=now,
            expires_at=now + ttl,
            currency=currency,
        )

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def total_items(self) -> int:
        return sum(it.quantity for it in self.items)

    @property
    def total_amount(self) -> Money:
        currency = self.items[0].unit_price.currency if self.items else self.currency
        return fold_money((it.total_price for it in self.items), currency=currency)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def find(self, key: CartLineKey) -> Optional[CartItem]:
        for it in self.items:
            if it.key == key:
                return it
        return None

    # ---- mutations (each returns a new Cart) --------------------------------

    def add_item(self, item: CartItem, now: datetime, ttl: timedelta = CART_TTL) -> "Cart":
        existing = self.find(item.key)
        if existing is None:
            items = self.items + (item,)
        else:
            merged = replace(existing, quantity=existing.quantity + item.quantity)
            items = tuple(merged if it.key == item.key else it for it in self.items)
        return self._touch(items, now, ttl)

    def with_quantity(
        self, key: CartLineKey, quantity: int, now: datetime, ttl: timedelta = CART_TTL
    ) -> "Cart":
        if quantity <= 0:
            return self.without(key, now, ttl)
        items = tuple(
            replace(it, quantity=quantity) if it.key == key else it for it in self.items
        )
        return self._touch(items, now, ttl)

    def without(self, key: CartLineKey, now: datetime, ttl: timedelta = CART_TTL) -> "Cart":
        items = tuple(it for it in self.items if it.key != key)
        return self._touch(items, now, ttl)

    def cleared(self, now: datetime, ttl: timedelta = CART_TTL) -> "Cart":
        return self._touch((), now, ttl)

    def deactivated(self) -> "Cart":
        return replace(self, is_active=False)

    def _touch(self, items: Tuple[CartItem, ...], now: datetime, ttl: timedelta) -> "Cart":
        return replace(self, items=items, last_updated=now, expires_at=now + ttl)
