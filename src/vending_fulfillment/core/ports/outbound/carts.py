from __future__ import annotations

from typing import Protocol

from returns.result import Result

from vending_fulfillment.core.domain.model.cart import Cart
from vending_fulfillment.core.domain.model.errors import VendingError


class CartRepository(Protocol):
    """Keyed record store: user_id -> the user's active cart."""

    def get_active(self, user_id: str) -> Result[Cart | None, VendingError]: ...

    def save(self, cart: Cart) -> Result[Cart, VendingError]: ...
