from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

DEFAULT_CURRENCY = "INR"
SUPPORTED_CURRENCIES = frozenset({"INR", "USD", "EUR"})

_CENT = Decimal("0.01")
_BASE36 = string.digits + string.ascii_uppercase


@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency: str = DEFAULT_CURRENCY

    @staticmethod
    def of(amount: Decimal | int | str, currency: str = DEFAULT_CURRENCY) -> "Money":
        dec = Decimal(str(amount)).quantize(_CENT, rounding=ROUND_HALF_UP)
        return Money(dec, currency)

    @staticmethod
    def zero(currency: str = DEFAULT_CURRENCY) -> "Money":
        return Money.of(0, currency)

    def __add__(self, other: "Money") -> "Money":
        self._assert_same_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._assert_same_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, n: int) -> "Money":
        return Money(
            (self.amount * Decimal(n)).quantize(_CENT, rounding=ROUND_HALF_UP),
            self.currency,
        )

    def percent(self, rate: Decimal) -> "Money":
        """``self * rate`` rounded half-up to two decimals."""
        return Money.of(self.amount * rate, self.currency)

    def to_minor_units(self) -> int:
        return int((self.amount * 100).to_integral_value(rounding=ROUND_HALF_UP))

    def _assert_same_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise ValueError(f"currency_mismatch: {self.currency} vs {other.currency}")


def fold_money(values: Iterable[Money], currency: str = DEFAULT_CURRENCY) -> Money:
    total = Money.zero(currency)
    for v in values:
        total = total + v
    return total


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _random_base36(length: int) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def new_reference(prefix: str, random_length: int, at: datetime | None = None) -> str:
    """``PREFIX-<base36 epoch millis>-<random base36>``, upper-case."""
    moment = at or now_utc()
    millis = int(moment.timestamp() * 1000)
    return f"{prefix}-{to_base36(millis)}-{_random_base36(random_length)}"


def epoch_millis(at: datetime | None = None) -> int:
    return int((at or now_utc()).timestamp() * 1000)


def gateway_reference(prefix: str, at: datetime | None = None, random_length: int = 6) -> str:
    """``<prefix><epoch millis>_<random base36>``; unique within one millisecond."""
    return f"{prefix}{epoch_millis(at)}_{_random_base36(random_length).lower()}"
