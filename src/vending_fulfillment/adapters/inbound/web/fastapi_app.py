from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from returns.result import Success

from vending_fulfillment.adapters.inbound.web.schemas import (
    AddCartItemRequest,
    CancelOrderRequest,
    CartLineIn,
    CartOut,
    CartSummaryOut,
    CartValidationOut,
    ConfirmPaymentRequest,
    CreateOrderRequest,
    DispenseItemRequest,
    ErrorResponse,
    ExpiryReportOut,
    InitiatePaymentRequest,
    OrderListResponse,
    OrderOut,
    OrderStatsOut,
    OrderSummaryOut,
    PaymentInitiationOut,
    PaymentListResponse,
    PaymentOut,
    PaymentStatsOut,
    PaymentWebhookRequest,
    RefundRequest,
    UpdateCartItemRequest,
    UpdateOrderStatusRequest,
    cart_out,
    cart_summary_out,
    cart_validation_out,
    expiry_report_out,
    order_out,
    order_stats_out,
    order_summary_out,
    payment_initiation_out,
    payment_out,
    payment_stats_out,
)
from vending_fulfillment.core.domain.model.errors import (
    AlreadyPaid,
    AmountMismatch,
    ConcurrentModification,
    ExceedsRefundable,
    GatewayError,
    InsufficientStock,
    InvalidInput,
    InvalidOperation,
    NotFound,
    NotRefundable,
    OutOfStock,
    ValidationFailed,
    VendingError,
)
from vending_fulfillment.core.ports.inbound.cart import (
    AddCartItemCommand,
    CartLineRef,
    CartUseCase,
)
from vending_fulfillment.core.ports.inbound.order import (
    CreateOrderCommand,
    ListOrdersQuery,
    OrderQueryUseCase,
    OrderUseCase,
)
from vending_fulfillment.core.ports.inbound.payment import (
    InitiatePaymentCommand,
    PaymentUseCase,
    PaymentWebhook,
    RefundCommand,
)

logger = logging.getLogger(__name__)

_CONFLICTS = (
    OutOfStock,
    InsufficientStock,
    InvalidOperation,
    AlreadyPaid,
    NotRefundable,
    ExceedsRefundable,
    AmountMismatch,
    ConcurrentModification,
)


def _map_error_to_http(err: VendingError) -> tuple[int, ErrorResponse]:
    if isinstance(err, ValidationFailed):
        return 400, ErrorResponse(
            type=type(err).__name__,
            message=err.message,
            details=[{"problem": p} for p in err.problems],
        )

    if isinstance(err, InvalidInput):
        return 400, ErrorResponse(type=type(err).__name__, message=str(err))

    if isinstance(err, NotFound):
        return 404, ErrorResponse(type=type(err).__name__, message=err.message)

    if isinstance(err, OutOfStock):
        return 409, ErrorResponse(
            type=type(err).__name__,
            message=err.message,
            details=[{"available": err.available}],
        )

    if isinstance(err, _CONFLICTS):
        return 409, ErrorResponse(type=type(err).__name__, message=str(err))

    if isinstance(err, GatewayError):
        return 502, ErrorResponse(type=type(err).__name__, message=str(err))

    return 500, ErrorResponse(type=type(err).__name__, message=str(err))


def create_app(
    cart_uc: CartUseCase,
    order_uc: OrderUseCase,
    order_query_uc: OrderQueryUseCase,
    payment_uc: PaymentUseCase,
) -> FastAPI:
    app = FastAPI(title="vending_fulfillment")

    # --- exception handlers --------------------------------------------------

    @app.exception_handler(VendingError)
    async def handle_domain_error(_: Request, exc: VendingError) -> JSONResponse:
        status, body = _map_error_to_http(exc)
        if status >= 500:
            logger.error("request failed: %s", exc)
        return JSONResponse(status_code=status, content=body.model_dump())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        body = ErrorResponse(
            type="RequestValidationError",
            message="invalid request",
            details=jsonable_encoder(exc.errors()),
        )
        return JSONResponse(status_code=400, content=body.model_dump())

    @app.exception_handler(Exception)
    async def handle_unexpected(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error")
        body = ErrorResponse(type=type(exc).__name__, message="internal server error")
        return JSONResponse(status_code=500, content=body.model_dump())

    # --- routes --------------------------------------------------------------

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # cart

    @app.get("/cart", response_model=CartOut)
    def get_cart(user_id: str = Header(..., alias="X-User-Id", min_length=1)) -> Any:
        result = cart_uc.get_or_create_cart(user_id)
        if isinstance(result, Success):
            return cart_out(result.unwrap())
        raise result.failure()

    @app.post(
        "/cart/items",
        response_model=CartOut,
        responses={
            400: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
        },
    )
    def add_cart_item(
        req: AddCartItemRequest,
        user_id: str = Header(..., alias="X-User-Id", min_length=1),
    ) -> Any:
        result = cart_uc.add_item(
            AddCartItemCommand(
                user_id=user_id,
                product_id=req.product_id,
                machine_id=req.machine_id,
                slot_number=req.slot_number,
                quantity=req.quantity,
            )
        )
        if isinstance(result, Success):
            return cart_out(result.unwrap())
        raise result.failure()

    @app.patch(
        "/cart/items",
        response_model=CartOut,
        responses={
            400: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
        },
    )
    def update_cart_item(
        req: UpdateCartItemRequest,
        user_id: str = Header(..., alias="X-User-Id", min_length=1),
    ) -> Any:
        result = cart_uc.update_item_quantity(_line_ref(user_id, req), req.quantity)
        if isinstance(result, Success):
            return cart_out(result.unwrap())
        raise result.failure()

    @app.delete("/cart/items", response_model=CartOut, responses={404: {"model": ErrorResponse}})
    def remove_cart_item(
        product_id: str = Query(..., min_length=1),
        machine_id: str = Query(..., min_length=1),
        slot_number: str = Query(..., min_length=1),
        user_id: str = Header(..., alias="X-User-Id", min_length=1),
    ) -> Any:
        line = CartLineIn(product_id=product_id, machine_id=machine_id, slot_number=slot_number)
        result = cart_uc.remove_item(_line_ref(user_id, line))
        if isinstance(result, Success):
            return cart_out(result.unwrap())
        raise result.failure()

    @app.delete("/cart", response_model=CartOut, responses={404: {"model": ErrorResponse}})
    def clear_cart(user_id: str = Header(..., alias="X-User-Id", min_length=1)) -> Any:
        result = cart_uc.clear(user_id)
        if isinstance(result, Success):
            return cart_out(result.unwrap())
        raise result.failure()

    @app.get("/cart/validation", response_model=CartValidationOut)
    def validate_cart(user_id: str = Header(..., alias="X-User-Id", min_length=1)) -> Any:
        result = cart_uc.validate(user_id)
        if isinstance(result, Success):
            return cart_validation_out(result.unwrap())
        raise result.failure()

    @app.get("/cart/summary", response_model=CartSummaryOut)
    def cart_summary(user_id: str = Header(..., alias="X-User-Id", min_length=1)) -> Any:
        result = cart_uc.summarize(user_id)
        if isinstance(result, Success):
            return cart_summary_out(result.unwrap())
        raise result.failure()

    # orders

    @app.post(
        "/orders",
        response_model=OrderOut,
        status_code=201,
        responses={
            400: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
        },
    )
    def create_order(
        req: CreateOrderRequest,
        response: Response,
        user_id: str = Header(..., alias="X-User-Id", min_length=1),
    ) -> Any:
        result = order_uc.create_order(
            CreateOrderCommand(
                user_id=user_id,
                payment_method=req.payment_method,
                payment_gateway=req.payment_gateway,
                notes=req.notes,
            )
        )
        if isinstance(result, Success):
            order = result.unwrap()
            response.headers["Location"] = f"/orders/{order.order_id.value}"
            return order_out(order)
        raise result.failure()

    @app.get("/orders", response_model=OrderListResponse, responses={400: {"model": ErrorResponse}})
    def list_orders(
        offset: int = Query(0, ge=0),
        limit: int = Query(10, ge=1, le=100),
        machine_id: Optional[str] = Query(None, min_length=1),
        status: Optional[str] = Query(None, min_length=1),
        sort_by: str = Query("order_date"),
        sort_dir: str = Query("desc"),
        user_id: Optional[str] = Header(None, alias="X-User-Id"),
    ) -> Any:
        result = order_query_uc.list_orders(
            ListOrdersQuery(
                offset=offset,
                limit=limit,
                user_id=user_id,
                machine_id=machine_id,
                status=status,
                sort_by=sort_by,
                sort_dir=sort_dir,
            )
        )
        if isinstance(result, Success):
            return OrderListResponse(
                offset=offset,
                limit=limit,
                items=[order_out(o) for o in result.unwrap()],
            )
        raise result.failure()

    @app.get("/orders/stats", response_model=OrderStatsOut)
    def order_stats(
        machine_id: Optional[str] = Query(None, min_length=1),
        user_id: Optional[str] = Header(None, alias="X-User-Id"),
    ) -> Any:
        result = order_query_uc.get_order_stats(user_id=user_id, machine_id=machine_id)
        if isinstance(result, Success):
            return order_stats_out(result.unwrap())
        raise result.failure()

    @app.get("/orders/{order_id}", response_model=OrderOut, responses={404: {"model": ErrorResponse}})
    def get_order(
        order_id: str, user_id: Optional[str] = Header(None, alias="X-User-Id")
    ) -> Any:
        result = order_uc.get_order(order_id, user_id)
        if isinstance(result, Success):
            return order_out(result.unwrap())
        raise result.failure()

    @app.get(
        "/orders/{order_id}/summary",
        response_model=OrderSummaryOut,
        responses={404: {"model": ErrorResponse}},
    )
    def get_order_summary(
        order_id: str, user_id: Optional[str] = Header(None, alias="X-User-Id")
    ) -> Any:
        result = order_query_uc.get_order_summary(order_id, user_id)
        if isinstance(result, Success):
            return order_summary_out(result.unwrap())
        raise result.failure()

    @app.get(
        "/orders/{order_id}/payments",
        response_model=PaymentListResponse,
        responses={404: {"model": ErrorResponse}},
    )
    def list_order_payments(
        order_id: str, user_id: Optional[str] = Header(None, alias="X-User-Id")
    ) -> Any:
        owned = order_uc.get_order(order_id, user_id)
        if not isinstance(owned, Success):
            raise owned.failure()
        result = payment_uc.list_order_payments(order_id)
        if isinstance(result, Success):
            return PaymentListResponse(items=[payment_out(p) for p in result.unwrap()])
        raise result.failure()

    @app.post(
        "/orders/{order_id}/cancel",
        response_model=OrderOut,
        responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    )
    def cancel_order(
        order_id: str,
        req: CancelOrderRequest,
        user_id: str = Header(..., alias="X-User-Id", min_length=1),
    ) -> Any:
        result = order_uc.cancel_order(order_id, user_id, req.reason)
        if isinstance(result, Success):
            return order_out(result.unwrap())
        raise result.failure()

    @app.patch(
        "/orders/{order_id}/status",
        response_model=OrderOut,
        responses={
            400: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
        },
    )
    def update_order_status(order_id: str, req: UpdateOrderStatusRequest) -> Any:
        result = order_uc.update_order_status(order_id, req.status, req.reason)
        if isinstance(result, Success):
            return order_out(result.unwrap())
        raise result.failure()

    @app.post(
        "/orders/{order_id}/dispense",
        response_model=OrderOut,
        responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    )
    def dispense_item(order_id: str, req: DispenseItemRequest) -> Any:
        result = order_uc.mark_item_dispensed(order_id, req.product_id, req.slot_number)
        if isinstance(result, Success):
            return order_out(result.unwrap())
        raise result.failure()

    # payments

    @app.post(
        "/payments",
        response_model=PaymentInitiationOut,
        status_code=201,
        responses={
            400: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
            502: {"model": ErrorResponse},
        },
    )
    def initiate_payment(
        req: InitiatePaymentRequest,
        user_id: str = Header(..., alias="X-User-Id", min_length=1),
    ) -> Any:
        result = payment_uc.initiate_payment(
            InitiatePaymentCommand(
                order_id=req.order_id,
                user_id=user_id,
                amount=req.amount,
                payment_method=req.payment_method,
                payment_gateway=req.payment_gateway,
                currency=req.currency,
            )
        )
        if isinstance(result, Success):
            return payment_initiation_out(result.unwrap())
        raise result.failure()

    @app.get("/payments/stats", response_model=PaymentStatsOut)
    def payment_stats(
        machine_id: Optional[str] = Query(None, min_length=1),
        user_id: Optional[str] = Header(None, alias="X-User-Id"),
    ) -> Any:
        result = payment_uc.get_payment_stats(user_id=user_id, machine_id=machine_id)
        if isinstance(result, Success):
            return payment_stats_out(result.unwrap())
        raise result.failure()

    @app.post(
        "/payments/webhook",
        response_model=PaymentOut,
        responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    )
    def payment_webhook(req: PaymentWebhookRequest) -> Any:
        result = payment_uc.process_payment_webhook(
            PaymentWebhook(
                payment_id=req.payment_id,
                gateway_transaction_id=req.gateway_transaction_id,
                status=req.status,
                gateway_payment_id=req.gateway_payment_id,
                signature=req.signature,
                error_code=req.error_code,
                error_message=req.error_message,
                raw_response=req.raw_response,
            )
        )
        if isinstance(result, Success):
            return payment_out(result.unwrap())
        raise result.failure()

    @app.post("/payments/expire", response_model=ExpiryReportOut)
    def expire_payments() -> Any:
        result = payment_uc.expire_stale_payments()
        if isinstance(result, Success):
            return expiry_report_out(result.unwrap())
        raise result.failure()

    @app.get("/payments/{payment_id}", response_model=PaymentOut, responses={404: {"model": ErrorResponse}})
    def get_payment(
        payment_id: str, user_id: Optional[str] = Header(None, alias="X-User-Id")
    ) -> Any:
        result = payment_uc.get_payment(payment_id, user_id)
        if isinstance(result, Success):
            return payment_out(result.unwrap())
        raise result.failure()

    @app.post(
        "/payments/{payment_id}/confirm",
        response_model=PaymentOut,
        responses={404: {"model": ErrorResponse}},
    )
    def confirm_payment(payment_id: str, req: Optional[ConfirmPaymentRequest] = None) -> Any:
        body = req or ConfirmPaymentRequest()
        result = payment_uc.confirm_payment(
            payment_id, body.gateway_transaction_id, body.signature
        )
        if isinstance(result, Success):
            return payment_out(result.unwrap())
        raise result.failure()

    @app.post(
        "/payments/{payment_id}/refund",
        response_model=PaymentOut,
        status_code=201,
        responses={
            400: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
        },
    )
    def refund_payment(payment_id: str, req: RefundRequest) -> Any:
        result = payment_uc.process_refund(
            RefundCommand(
                payment_id=payment_id, refund_amount=req.refund_amount, reason=req.reason
            )
        )
        if isinstance(result, Success):
            return payment_out(result.unwrap())
        raise result.failure()

    return app


def _line_ref(user_id: str, line: CartLineIn) -> CartLineRef:
    return CartLineRef(
        user_id=user_id,
        product_id=line.product_id,
        machine_id=line.machine_id,
        slot_number=line.slot_number,
    )
