from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable

from returns.result import Failure, Result, Success

from vending_fulfillment.core.domain.model.errors import (
    InsufficientStock,
    NotFound,
    VendingError,
)
from vending_fulfillment.core.domain.model.machine import (
    Product,
    ProductSlot,
    VendingMachine,
)
from vending_fulfillment.core.ports.outbound.machines import MachineStore, ProductCatalog


@dataclass
class InMemoryProductCatalog(ProductCatalog):
    _store: Dict[str, Product] = field(default_factory=dict)

    @staticmethod
    def of(products: Iterable[Product]) -> "InMemoryProductCatalog":
        return InMemoryProductCatalog({p.product_id: p for p in products})

    def get(self, product_id: str) -> Result[Product, VendingError]:
        if product_id not in self._store:
            return Failure(
                NotFound(message="product not found", entity="product", key=product_id)
            )
        return Success(self._store[product_id])


@dataclass
class InMemoryMachineStore(MachineStore):
    """Slot updates run under one lock so check-and-decrement is atomic."""

    _store: Dict[str, VendingMachine] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @staticmethod
    def of(machines: Iterable[VendingMachine]) -> "InMemoryMachineStore":
        return InMemoryMachineStore({m.machine_id: m for m in machines})

    def get(self, machine_id: str) -> Result[VendingMachine, VendingError]:
        with self._lock:
            if machine_id not in self._store:
                return Failure(_machine_not_found(machine_id))
            return Success(self._store[machine_id])

    def put(self, machine: VendingMachine) -> None:
        with self._lock:
            self._store[machine.machine_id] = machine

    def reserve_slot(
        self, machine_id: str, slot_number: str, product_id: str, quantity: int
    ) -> Result[ProductSlot, VendingError]:
        with self._lock:
            located = self._locate(machine_id, slot_number, product_id)
            if isinstance(located, Failure):
                return located
            machine, slot = located.unwrap()
            if slot.quantity < quantity:
                return Failure(
                    InsufficientStock(
                        message="insufficient stock",
                        machine_id=machine_id,
                        slot_number=slot_number,
                        available=slot.quantity,
                        requested=quantity,
                    )
                )
            updated = slot.with_quantity(slot.quantity - quantity)
            self._store[machine_id] = machine.with_slot(updated)
            return Success(updated)

    def restore_slot(
        self, machine_id: str, slot_number: str, product_id: str, quantity: int
    ) -> Result[ProductSlot, VendingError]:
        with self._lock:
            located = self._locate(machine_id, slot_number, product_id)
            if isinstance(located, Failure):
                return located
            machine, slot = located.unwrap()
            updated = slot.with_quantity(slot.quantity + quantity)
            self._store[machine_id] = machine.with_slot(updated)
            return Success(updated)

    def _locate(
        self, machine_id: str, slot_number: str, product_id: str
    ) -> Result[tuple[VendingMachine, ProductSlot], VendingError]:
        machine = self._store.get(machine_id)
        if machine is None:
            return Failure(_machine_not_found(machine_id))
        slot = machine.find_slot(slot_number, product_id)
        if slot is None:
            return Failure(
                NotFound(
                    message=f"slot does not hold product {product_id}",
                    entity="slot",
                    key=f"{machine_id}/{slot_number}",
                )
            )
        return Success((machine, slot))


def _machine_not_found(machine_id: str) -> NotFound:
    return NotFound(message="machine not found", entity="machine", key=machine_id)
