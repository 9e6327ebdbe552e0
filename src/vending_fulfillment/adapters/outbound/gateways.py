from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict

from returns.result import Failure, Result, Success

from vending_fulfillment.core.domain.model.common import Money, gateway_reference
from vending_fulfillment.core.domain.model.errors import GatewayError, VendingError
from vending_fulfillment.core.domain.model.payment import GatewayResponse, Payment
from vending_fulfillment.core.ports.outbound.gateway import (
    GatewayAdapter,
    GatewayCheckout,
    GatewayRegistry,
    RefundOutcome,
)

# Sandbox stand-ins: they prepare checkout payloads and accept refunds
# locally, no network calls. Real settlement arrives through the webhook.


@dataclass
class RazorpayGateway(GatewayAdapter):
    key_id: str = "rzp_test_key"
    merchant_name: str = "Frovo Vending"

    def create_payment(self, payment: Payment) -> Result[GatewayCheckout, VendingError]:
        order_ref = gateway_reference("rzp_order_")
        return Success(
            GatewayCheckout(
                client_payload={
                    "orderId": order_ref,
                    "amount": payment.amount.to_minor_units(),  # paise
                    "currency": payment.currency,
                    "key": self.key_id,
                    "name": self.merchant_name,
                    "description": f"Payment for Order {payment.order_id}",
                    "receipt": payment.payment_id.value,
                },
                response=GatewayResponse(gateway_order_id=order_ref),
            )
        )

    def create_refund(self, payment: Payment, amount: Money) -> RefundOutcome:
        return RefundOutcome(success=True, refund_id=gateway_reference("rfnd_"))


@dataclass
class StripeGateway(GatewayAdapter):
    def create_payment(self, payment: Payment) -> Result[GatewayCheckout, VendingError]:
        intent = gateway_reference("pi_")
        return Success(
            GatewayCheckout(
                client_payload={
                    "clientSecret": f"{intent}_secret_test",
                    "amount": payment.amount.to_minor_units(),
                    "currency": payment.currency.lower(),
                },
                response=GatewayResponse(gateway_payment_id=intent),
            )
        )

    def create_refund(self, payment: Payment, amount: Money) -> RefundOutcome:
        return RefundOutcome(success=True, refund_id=gateway_reference("re_"))


@dataclass
class CashGateway(GatewayAdapter):
    """Cash is collected at the machine, so the payment settles on creation."""

    def create_payment(self, payment: Payment) -> Result[GatewayCheckout, VendingError]:
        tx = gateway_reference("CASH_")
        return Success(
            GatewayCheckout(
                client_payload={
                    "success": True,
                    "message": "Cash payment processed",
                    "transactionId": tx,
                },
                response=GatewayResponse(gateway_transaction_id=tx),
                settled=True,
            )
        )

    def create_refund(self, payment: Payment, amount: Money) -> RefundOutcome:
        return RefundOutcome(success=True, refund_id=gateway_reference("CASH_REFUND_"))


@dataclass
class MockGateway(GatewayAdapter):
    """Catch-all for gateways without a dedicated adapter."""

    base_url: str = "https://mock-payment-gateway.com/pay"
    max_amount: Decimal = Decimal("1000000.00")
    decline_refunds: bool = False

    def create_payment(self, payment: Payment) -> Result[GatewayCheckout, VendingError]:
        if payment.amount.amount > self.max_amount:
            return Failure(
                GatewayError(
                    message="amount too large",
                    gateway=payment.payment_gateway.value,
                    code="LIMIT_EXCEEDED",
                )
            )
        tx = gateway_reference("MOCK_")
        return Success(
            GatewayCheckout(
                client_payload={
                    "transactionId": tx,
                    "amount": str(payment.amount.amount),
                    "currency": payment.currency,
                    "redirectUrl": f"{self.base_url}/{tx}",
                },
                response=GatewayResponse(gateway_transaction_id=tx),
            )
        )

    def create_refund(self, payment: Payment, amount: Money) -> RefundOutcome:
        if self.decline_refunds:
            return RefundOutcome(
                success=False,
                error_code="REFUND_DECLINED",
                error_message="refund declined by gateway",
            )
        return RefundOutcome(success=True, refund_id=gateway_reference("MOCK_REFUND_"))


@dataclass
class StaticGatewayRegistry(GatewayRegistry):
    adapters: Dict[str, GatewayAdapter] = field(default_factory=dict)
    fallback: GatewayAdapter = field(default_factory=MockGateway)

    def adapter_for(self, gateway: str) -> GatewayAdapter:
        return self.adapters.get(gateway, self.fallback)
