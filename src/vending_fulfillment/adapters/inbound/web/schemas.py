from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from vending_fulfillment.core.domain.model.cart import Cart, CartItem
from vending_fulfillment.core.domain.model.common import Money
from vending_fulfillment.core.domain.model.machine import Location
from vending_fulfillment.core.domain.model.order import Order
from vending_fulfillment.core.domain.model.payment import Payment
from vending_fulfillment.core.ports.inbound.cart import CartSummary, CartValidation
from vending_fulfillment.core.ports.inbound.order import OrderStats, OrderSummaryView
from vending_fulfillment.core.ports.inbound.payment import (
    ExpiryReport,
    PaymentInitiation,
    PaymentStats,
)

# ---- requests --------------------------------------------------------------


class CartLineIn(BaseModel):
    product_id: str = Field(min_length=1, examples=["P-COLA"])
    machine_id: str = Field(min_length=1, examples=["VM-001"])
    slot_number: str = Field(min_length=1, examples=["A1"])


class AddCartItemRequest(CartLineIn):
    quantity: int = Field(gt=0, examples=[2])


class UpdateCartItemRequest(CartLineIn):
    quantity: int = Field(ge=0, examples=[1])


class CreateOrderRequest(BaseModel):
    payment_method: str = Field(min_length=1, examples=["upi"])
    payment_gateway: str = Field(min_length=1, examples=["razorpay"])
    notes: Optional[str] = Field(None, max_length=500)


class CancelOrderRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=200, examples=["changed my mind"])


class UpdateOrderStatusRequest(BaseModel):
    status: str = Field(min_length=1, examples=["processing"])
    reason: Optional[str] = Field(None, max_length=200)


class DispenseItemRequest(BaseModel):
    product_id: str = Field(min_length=1)
    slot_number: str = Field(min_length=1)


class InitiatePaymentRequest(BaseModel):
    order_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, examples=["47.20"])
    payment_method: str = Field(min_length=1, examples=["upi"])
    payment_gateway: str = Field(min_length=1, examples=["razorpay"])
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class PaymentWebhookRequest(BaseModel):
    payment_id: str = Field(min_length=1)
    gateway_transaction_id: str = Field(min_length=1)
    status: str = Field(examples=["success"])
    gateway_payment_id: Optional[str] = None
    signature: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw_response: Optional[dict[str, Any]] = None


class ConfirmPaymentRequest(BaseModel):
    gateway_transaction_id: Optional[str] = None
    signature: Optional[str] = None


class RefundRequest(BaseModel):
    refund_amount: Decimal = Field(gt=0, examples=["10.00"])
    reason: str = Field(min_length=1, max_length=200)


# ---- responses -------------------------------------------------------------


class MoneyOut(BaseModel):
    amount: str
    currency: str


class LocationOut(BaseModel):
    address: str
    city: str
    state: str
    landmark: str


class CartItemOut(BaseModel):
    product_id: str
    product_name: str
    machine_id: str
    slot_number: str
    quantity: int
    unit_price: MoneyOut
    total_price: MoneyOut
    added_at: datetime


class CartOut(BaseModel):
    user_id: str
    items: list[CartItemOut]
    total_items: int
    total_amount: MoneyOut
    last_updated: datetime
    expires_at: datetime


class CartSummaryOut(BaseModel):
    is_empty: bool
    total_items: int
    subtotal: MoneyOut
    tax: MoneyOut
    final_amount: MoneyOut
    items: list[CartItemOut]
    items_by_machine: dict[str, list[CartItemOut]]
    last_updated: Optional[datetime]


class InvalidCartLineOut(BaseModel):
    item: CartItemOut
    reason: str
    available_quantity: Optional[int] = None
    old_price: Optional[MoneyOut] = None
    new_price: Optional[MoneyOut] = None


class CartValidationOut(BaseModel):
    is_valid: bool
    invalid_items: list[InvalidCartLineOut]
    valid_items: list[CartItemOut]


class OrderItemOut(BaseModel):
    product_id: str
    product_name: str
    product_description: str
    machine_id: str
    machine_name: str
    slot_number: str
    quantity: int
    unit_price: MoneyOut
    total_price: MoneyOut
    dispensed: bool
    dispensed_at: Optional[datetime]


class PaymentInfoOut(BaseModel):
    payment_method: str
    payment_gateway: str
    payment_status: str
    paid_amount: MoneyOut
    payment_id: Optional[str]
    transaction_id: Optional[str]
    payment_date: Optional[datetime]


class DeliveryInfoOut(BaseModel):
    machine_id: str
    machine_name: str
    location: LocationOut
    estimated_dispense_time: datetime
    actual_dispense_time: Optional[datetime]


class OrderOut(BaseModel):
    order_id: str
    user_id: str
    order_status: str
    items: list[OrderItemOut]
    subtotal: MoneyOut
    tax: MoneyOut
    total_amount: MoneyOut
    payment_info: PaymentInfoOut
    delivery_info: DeliveryInfoOut
    order_date: datetime
    completed_date: Optional[datetime]
    notes: Optional[str]
    cancel_reason: Optional[str]
    refund_reason: Optional[str]


class OrderListResponse(BaseModel):
    offset: int
    limit: int
    items: list[OrderOut]


class OrderSummaryItemOut(BaseModel):
    product_name: str
    quantity: int
    unit_price: MoneyOut
    total_price: MoneyOut
    dispensed: bool
    dispensed_at: Optional[datetime]


class OrderSummaryOut(BaseModel):
    order_id: str
    order_status: str
    payment_status: str
    total_items: int
    subtotal: MoneyOut
    tax: MoneyOut
    total_amount: MoneyOut
    order_date: datetime
    estimated_dispense_time: datetime
    actual_dispense_time: Optional[datetime]
    machine_id: str
    machine_name: str
    location: LocationOut
    items: list[OrderSummaryItemOut]
    can_be_cancelled: bool
    is_completed: bool


class OrderStatsOut(BaseModel):
    total_orders: int
    total_revenue: str
    avg_order_value: str
    pending_orders: int
    completed_orders: int
    cancelled_orders: int
    by_status: dict[str, int]


class GatewayResponseOut(BaseModel):
    gateway_transaction_id: Optional[str]
    gateway_order_id: Optional[str]
    gateway_payment_id: Optional[str]
    error_code: Optional[str]
    error_message: Optional[str]


class PaymentOut(BaseModel):
    payment_id: str
    order_id: str
    user_id: str
    amount: MoneyOut
    payment_method: str
    payment_gateway: str
    transaction_type: str
    status: str
    gateway_response: GatewayResponseOut
    initiated_at: datetime
    completed_at: Optional[datetime]
    failed_at: Optional[datetime]
    expires_at: datetime
    attempts: int
    max_attempts: int
    refundable_amount: MoneyOut
    refunded_amount: MoneyOut
    notes: Optional[str]


class PaymentInitiationOut(BaseModel):
    payment: PaymentOut
    gateway_data: dict[str, Any]


class PaymentListResponse(BaseModel):
    items: list[PaymentOut]


class PaymentStatsOut(BaseModel):
    total_payments: int
    total_amount: str
    total_successful_amount: str
    avg_payment_amount: str
    successful_payments: int
    failed_payments: int
    pending_payments: int
    by_status: dict[str, int]


class ExpiryReportOut(BaseModel):
    expired: list[str]
    errors: list[str]


class ErrorResponse(BaseModel):
    type: str
    message: str
    details: list[dict[str, Any]] | None = None


# ---- mapping ---------------------------------------------------------------


def money_out(m: Money) -> MoneyOut:
    return MoneyOut(amount=str(m.amount), currency=m.currency)


def location_out(loc: Location) -> LocationOut:
    return LocationOut(
        address=loc.address, city=loc.city, state=loc.state, landmark=loc.landmark
    )


def cart_item_out(it: CartItem) -> CartItemOut:
    return CartItemOut(
        product_id=it.product_id,
        product_name=it.product_name,
        machine_id=it.machine_id,
        slot_number=it.slot_number,
        quantity=it.quantity,
        unit_price=money_out(it.unit_price),
        total_price=money_out(it.total_price),
        added_at=it.added_at,
    )


def cart_out(cart: Cart) -> CartOut:
    return CartOut(
        user_id=cart.user_id,
        items=[cart_item_out(it) for it in cart.items],
        total_items=cart.total_items,
        total_amount=money_out(cart.total_amount),
        last_updated=cart.last_updated,
        expires_at=cart.expires_at,
    )


def cart_summary_out(s: CartSummary) -> CartSummaryOut:
    return CartSummaryOut(
        is_empty=s.is_empty,
        total_items=s.total_items,
        subtotal=money_out(s.subtotal),
        tax=money_out(s.tax),
        final_amount=money_out(s.final_amount),
        items=[cart_item_out(it) for it in s.items],
        items_by_machine={
            mid: [cart_item_out(it) for it in items]
            for mid, items in s.items_by_machine.items()
        },
        last_updated=s.last_updated,
    )


def cart_validation_out(v: CartValidation) -> CartValidationOut:
    return CartValidationOut(
        is_valid=v.is_valid,
        invalid_items=[
            InvalidCartLineOut(
                item=cart_item_out(bad.item),
                reason=bad.reason,
                available_quantity=bad.available_quantity,
                old_price=money_out(bad.old_price) if bad.old_price else None,
                new_price=money_out(bad.new_price) if bad.new_price else None,
            )
            for bad in v.invalid_items
        ],
        valid_items=[cart_item_out(it) for it in v.valid_items],
    )


def order_out(o: Order) -> OrderOut:
    pi = o.payment_info
    di = o.delivery_info
    return OrderOut(
        order_id=o.order_id.value,
        user_id=o.user_id,
        order_status=o.order_status.value,
        items=[
            OrderItemOut(
                product_id=it.product_id,
                product_name=it.product_name,
                product_description=it.product_description,
                machine_id=it.machine_id,
                machine_name=it.machine_name,
                slot_number=it.slot_number,
                quantity=it.quantity,
                unit_price=money_out(it.unit_price),
                total_price=money_out(it.total_price),
                dispensed=it.dispensed,
                dispensed_at=it.dispensed_at,
            )
            for it in o.items
        ],
        subtotal=money_out(o.subtotal),
        tax=money_out(o.tax),
        total_amount=money_out(o.total_amount),
        payment_info=PaymentInfoOut(
            payment_method=pi.payment_method,
            payment_gateway=pi.payment_gateway,
            payment_status=pi.payment_status.value,
            paid_amount=money_out(pi.paid_amount),
            payment_id=pi.payment_id,
            transaction_id=pi.transaction_id,
            payment_date=pi.payment_date,
        ),
        delivery_info=DeliveryInfoOut(
            machine_id=di.machine_id,
            machine_name=di.machine_name,
            location=location_out(di.location),
            estimated_dispense_time=di.estimated_dispense_time,
            actual_dispense_time=di.actual_dispense_time,
        ),
        order_date=o.order_date,
        completed_date=o.completed_date,
        notes=o.notes,
        cancel_reason=o.cancel_reason,
        refund_reason=o.refund_reason,
    )


def order_summary_out(v: OrderSummaryView) -> OrderSummaryOut:
    return OrderSummaryOut(
        order_id=v.order_id,
        order_status=v.order_status.value,
        payment_status=v.payment_status.value,
        total_items=v.total_items,
        subtotal=money_out(v.subtotal),
        tax=money_out(v.tax),
        total_amount=money_out(v.total_amount),
        order_date=v.order_date,
        estimated_dispense_time=v.estimated_dispense_time,
        actual_dispense_time=v.actual_dispense_time,
        machine_id=v.machine_id,
        machine_name=v.machine_name,
        location=location_out(v.location),
        items=[
            OrderSummaryItemOut(
                product_name=it.product_name,
                quantity=it.quantity,
                unit_price=money_out(it.unit_price),
                total_price=money_out(it.total_price),
                dispensed=it.dispensed,
                dispensed_at=it.dispensed_at,
            )
            for it in v.items
        ],
        can_be_cancelled=v.can_be_cancelled,
        is_completed=v.is_completed,
    )


def order_stats_out(s: OrderStats) -> OrderStatsOut:
    return OrderStatsOut(
        total_orders=s.total_orders,
        total_revenue=str(s.total_revenue),
        avg_order_value=str(s.avg_order_value),
        pending_orders=s.pending_orders,
        completed_orders=s.completed_orders,
        cancelled_orders=s.cancelled_orders,
        by_status=dict(s.by_status),
    )


def payment_out(p: Payment) -> PaymentOut:
    gr = p.gateway_response
    return PaymentOut(
        payment_id=p.payment_id.value,
        order_id=p.order_id,
        user_id=p.user_id,
        amount=money_out(p.amount),
        payment_method=p.payment_method.value,
        payment_gateway=p.payment_gateway.value,
        transaction_type=p.transaction_type.value,
        status=p.status.value,
        gateway_response=GatewayResponseOut(
            gateway_transaction_id=gr.gateway_transaction_id,
            gateway_order_id=gr.gateway_order_id,
            gateway_payment_id=gr.gateway_payment_id,
            error_code=gr.error_code,
            error_message=gr.error_message,
        ),
        initiated_at=p.initiated_at,
        completed_at=p.completed_at,
        failed_at=p.failed_at,
        expires_at=p.expires_at,
        attempts=p.attempts,
        max_attempts=p.max_attempts,
        refundable_amount=money_out(p.refundable_amount),
        refunded_amount=money_out(p.refunded_amount),
        notes=p.notes,
    )


def payment_initiation_out(i: PaymentInitiation) -> PaymentInitiationOut:
    return PaymentInitiationOut(payment=payment_out(i.payment), gateway_data=dict(i.gateway_data))


def payment_stats_out(s: PaymentStats) -> PaymentStatsOut:
    return PaymentStatsOut(
        total_payments=s.total_payments,
        total_amount=str(s.total_amount),
        total_successful_amount=str(s.total_successful_amount),
        avg_payment_amount=str(s.avg_payment_amount),
        successful_payments=s.successful_payments,
        failed_payments=s.failed_payments,
        pending_payments=s.pending_payments,
        by_status=dict(s.by_status),
    )


def expiry_report_out(r: ExpiryReport) -> ExpiryReportOut:
    return ExpiryReportOut(expired=list(r.expired), errors=list(r.errors))
