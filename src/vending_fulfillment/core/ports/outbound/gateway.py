from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

from returns.result import Result

from vending_fulfillment.core.domain.model.common import Money
from vending_fulfillment.core.domain.model.errors import VendingError
from vending_fulfillment.core.domain.model.payment import GatewayResponse, Payment


@dataclass(frozen=True)
class GatewayCheckout:
    """What a gateway prepared for a payment row."""

    client_payload: Mapping[str, Any]
    response: GatewayResponse = field(default_factory=GatewayResponse)
    settled: bool = False


@dataclass(frozen=True)
class RefundOutcome:
    success: bool
    refund_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class GatewayAdapter(Protocol):
    """
    Only an inbound webhook settles a non-cash payment; ``settled`` is honoured
    for synchronous gateways (cash) only.
    """

    def create_payment(self, payment: Payment) -> Result[GatewayCheckout, VendingError]: ...

    def create_refund(self, payment: Payment, amount: Money) -> RefundOutcome: ...


class GatewayRegistry(Protocol):
    def adapter_for(self, gateway: str) -> GatewayAdapter: ...
