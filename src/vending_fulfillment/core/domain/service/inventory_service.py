from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from returns.result import Failure, Result, Success

from vending_fulfillment.core.domain.model.errors import InvalidInput, VendingError
from vending_fulfillment.core.domain.model.machine import ProductSlot
from vending_fulfillment.core.ports.outbound.machines import MachineStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotLine:
    machine_id: str
    slot_number: str
    product_id: str
    quantity: int


@dataclass(frozen=True)
class SkippedRestoration:
    line: SlotLine
    reason: str


@dataclass(frozen=True)
class RestorationReport:
    restored: Tuple[SlotLine, ...] = ()
    skipped: Tuple[SkippedRestoration, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.skipped


@dataclass(frozen=True)
class InventoryDeps:
    machines: MachineStore


@dataclass(frozen=True)
class InventoryService:
    deps: InventoryDeps

    def reserve(
        self, machine_id: str, slot_number: str, product_id: str, quantity: int
    ) -> Result[ProductSlot, VendingError]:
        if quantity <= 0:
            return Failure(InvalidInput("reservation quantity must be > 0"))
        return self.deps.machines.reserve_slot(machine_id, slot_number, product_id, quantity)

    def restore(
        self, machine_id: str, slot_number: str, product_id: str, quantity: int
    ) -> Result[ProductSlot, VendingError]:
        if quantity <= 0:
            return Failure(InvalidInput("restore quantity must be > 0"))
        result = self.deps.machines.restore_slot(
            machine_id, slot_number, product_id, quantity
        )
        if isinstance(result, Success):
            slot = result.unwrap()
            if slot.quantity > slot.max_capacity:
                logger.warning(
                    "slot %s/%s restored above capacity: %d > %d",
                    machine_id,
                    slot_number,
                    slot.quantity,
                    slot.max_capacity,
                )
        return result

    def reserve_all(
        self, lines: Sequence[SlotLine]
    ) -> Result[Tuple[SlotLine, ...], VendingError]:
        """All lines or none: a failed line rolls back the ones already taken."""
        applied: List[SlotLine] = []
        for line in lines:
            result = self.reserve(
                line.machine_id, line.slot_number, line.product_id, line.quantity
            )
            if isinstance(result, Failure):
                report = self.restore_all(reversed(applied))
                if not report.complete:
                    logger.error(
                        "reservation rollback incomplete: %d line(s) not restored",
                        len(report.skipped),
                    )
                return Failure(result.failure())
            applied.append(line)
        return Success(tuple(applied))

    def restore_all(self, lines: Iterable[SlotLine]) -> RestorationReport:
        """Each line is attempted on its own; one missing slot never blocks the rest."""
        restored: List[SlotLine] = []
        skipped: List[SkippedRestoration] = []
        for line in lines:
            result = self.restore(
                line.machine_id, line.slot_number, line.product_id, line.quantity
            )
            if isinstance(result, Success):
                restored.append(line)
                continue
            reason = str(result.failure())
            logger.warning(
                "skipping stock restoration for %s/%s (product %s, qty %d): %s",
                line.machine_id,
                line.slot_number,
                line.product_id,
                line.quantity,
                reason,
            )
            skipped.append(SkippedRestoration(line=line, reason=reason))
        return RestorationReport(restored=tuple(restored), skipped=tuple(skipped))
