from __future__ import annotations

from decimal import Decimal
from typing import Tuple

from vending_fulfillment.core.domain.model.common import Money

TAX_RATE = Decimal("0.18")  # GST


def tax_on(subtotal: Money, rate: Decimal = TAX_RATE) -> Money:
    return subtotal.percent(rate)


def with_tax(subtotal: Money, rate: Decimal = TAX_RATE) -> Tuple[Money, Money]:
    """(tax, subtotal + tax)"""
    tax = tax_on(subtotal, rate)
    return tax, subtotal + tax
