from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Tuple

from vending_fulfillment.core.domain.model.common import Money


@dataclass(frozen=True)
class Product:
    product_id: str
    name: str
    price: Money
    description: str = ""


@dataclass(frozen=True)
class Location:
    address: str
    city: str
    state: str = ""
    landmark: str = ""


@dataclass(frozen=True)
class ProductSlot:
    slot_number: str
    product_id: str
    quantity: int
    max_capacity: int
    price: Money

    def holds(self, slot_number: str, product_id: str) -> bool:
        return self.slot_number == slot_number and self.product_id == product_id

    def with_quantity(self, quantity: int) -> "ProductSlot":
        return replace(self, quantity=quantity)


@dataclass(frozen=True)
class VendingMachine:
    machine_id: str
    name: str
    location: Location
    slots: Tuple[ProductSlot, ...] = ()

    def find_slot(self, slot_number: str, product_id: str) -> Optional[ProductSlot]:
        for slot in self.slots:
            if slot.holds(slot_number, product_id):
                return slot
        return None

    def with_slot(self, updated: ProductSlot) -> "VendingMachine":
        slots = tuple(
            updated if s.holds(updated.slot_number, updated.product_id) else s
            for s in self.slots
        )
        return replace(self, slots=slots)

    @property
    def total_stock(self) -> int:
        return sum(s.quantity for s in self.slots)
