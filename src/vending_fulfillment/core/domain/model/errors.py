from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Tuple


@dataclass(frozen=True)
class VendingError(Exception):
    message: str

    def __str__(self) -> str:  # pragma: no cover
        return self.message


@dataclass(frozen=True)
class NotFound(VendingError):
    entity: str = ""
    key: str = ""

    def __str__(self) -> str:  # pragma: no cover
        if not self.entity:
            return self.message
        return f"not_found: {self.entity}={self.key} ({self.message})"


@dataclass(frozen=True)
class InvalidInput(VendingError):
    pass


@dataclass(frozen=True)
class OutOfStock(VendingError):
    available: int = 0

    def __str__(self) -> str:  # pragma: no cover
        return f"out_of_stock: available={self.available} ({self.message})"


@dataclass(frozen=True)
class InsufficientStock(VendingError):
    machine_id: str = ""
    slot_number: str = ""
    available: int = 0
    requested: int = 0

    def __str__(self) -> str:  # pragma: no cover
        return (
            f"insufficient_stock: {self.machine_id}/{self.slot_number} "
            f"available={self.available} requested={self.requested} ({self.message})"
        )


@dataclass(frozen=True)
class ValidationFailed(VendingError):
    problems: Tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:  # pragma: no cover
        if not self.problems:
            return self.message
        return f"{self.message}: {', '.join(self.problems)}"


@dataclass(frozen=True)
class InvalidOperation(VendingError):
    pass


@dataclass(frozen=True)
class AmountMismatch(VendingError):
    expected: Decimal = Decimal("0")
    actual: Decimal = Decimal("0")

    def __str__(self) -> str:  # pragma: no cover
        return f"amount_mismatch: expected={self.expected} actual={self.actual} ({self.message})"


@dataclass(frozen=True)
class AlreadyPaid(VendingError):
    order_id: str = ""


@dataclass(frozen=True)
class NotRefundable(VendingError):
    payment_id: str = ""


@dataclass(frozen=True)
class ExceedsRefundable(VendingError):
    refundable: Decimal = Decimal("0")
    requested: Decimal = Decimal("0")

    def __str__(self) -> str:  # pragma: no cover
        return (
            f"exceeds_refundable: refundable={self.refundable} "
            f"requested={self.requested} ({self.message})"
        )


# ---- infrastructure --------------------------------------------------------


@dataclass(frozen=True)
class PersistenceError(VendingError):
    pass


@dataclass(frozen=True)
class ConcurrentModification(PersistenceError):
    entity: str = ""
    key: str = ""

    def __str__(self) -> str:  # pragma: no cover
        return f"concurrent_modification: {self.entity}={self.key} ({self.message})"


@dataclass(frozen=True)
class GatewayError(VendingError):
    gateway: str = ""
    code: str = ""
