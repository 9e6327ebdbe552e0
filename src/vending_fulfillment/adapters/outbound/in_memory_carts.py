from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, List

from returns.result import Result, Success

from vending_fulfillment.core.domain.model.cart import Cart
from vending_fulfillment.core.domain.model.errors import VendingError
from vending_fulfillment.core.ports.outbound.carts import CartRepository


@dataclass
class InMemoryCartRepository(CartRepository):
    _active: Dict[str, Cart] = field(default_factory=dict)
    _retired: List[Cart] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get_active(self, user_id: str) -> Result[Cart | None, VendingError]:
        with self._lock:
            return Success(self._active.get(user_id))

    def save(self, cart: Cart) -> Result[Cart, VendingError]:
        with self._lock:
            if cart.is_active:
                self._active[cart.user_id] = cart
            else:
                if self._active.get(cart.user_id) is not None:
                    del self._active[cart.user_id]
                self._retired.append(cart)
            return Success(cart)
