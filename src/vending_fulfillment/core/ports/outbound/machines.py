from __future__ import annotations

from typing import Protocol

from returns.result import Result

from vending_fulfillment.core.domain.model.errors import VendingError
from vending_fulfillment.core.domain.model.machine import (
    Product,
    ProductSlot,
    VendingMachine,
)


class ProductCatalog(Protocol):
    def get(self, product_id: str) -> Result[Product, VendingError]: ...


class MachineStore(Protocol):
    """
    Slot quantity is the hottest shared value in the system. A real store
    implements reserve_slot as a single conditional update
    (``quantity = quantity - n WHERE quantity >= n``), never read-then-write.
    """

    def get(self, machine_id: str) -> Result[VendingMachine, VendingError]: ...

    def reserve_slot(
        self, machine_id: str, slot_number: str, product_id: str, quantity: int
    ) -> Result[ProductSlot, VendingError]:
        """Decrement iff the slot holds at least ``quantity``; returns the updated slot."""
        ...

    def restore_slot(
        self, machine_id: str, slot_number: str, product_id: str, quantity: int
    ) -> Result[ProductSlot, VendingError]:
        """Unconditional increment; returns the updated slot."""
        ...
