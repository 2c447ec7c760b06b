import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from checkout.container import Container
from checkout.presentation.schemas import (
    CreateOrderRequest, OrderResponse, OrderListResponse, CheckoutResponse, CancelOrderRequest, UpdateStatusRequest,
    VerifyPaymentRequest, PaymentResponse, PaymentIntentResponse, WebhookResponse, ErrorResponse
)
from checkout.application.order_service import CreateOrderDTO, OrderService
from checkout.application.payment_reconciler import PaymentReconciler
from checkout.domain.models import ItemRequest, OrderStatus
from checkout.domain.exceptions import (
    DomainException, ValidationError, InsufficientStockError, NotFoundError, InvalidTransitionError,
    SignatureError, GatewayError, GenerationError
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(e: DomainException) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (ValidationError, InsufficientStockError, SignatureError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, (GatewayError, GenerationError)):
        return HTTPException(status_code=503, detail=f"Service unavailable: {e}")
    return HTTPException(status_code=500, detail=str(e))


# Фабрики для зависимостей
def get_container(request: Request) -> Container:
    return request.app.state.container


def get_order_service(container: Container = Depends(get_container)) -> OrderService:
    return container.order_service


def get_reconciler(container: Container = Depends(get_container)) -> PaymentReconciler:
    return container.reconciler


@router.post(
    "/orders",
    response_model=CheckoutResponse,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    status_code=status.HTTP_201_CREATED
)
async def create_order(
    request: CreateOrderRequest,
    container: Container = Depends(get_container),
    service: OrderService = Depends(get_order_service)
):
    """Создать заказ и запросить платежное намерение"""
    if not container.rate_limiter.allow(f"orders:{request.user_id}"):
        raise HTTPException(status_code=429, detail="Слишком много запросов, попробуйте позже")

    try:
        dto = CreateOrderDTO(
            user_id=request.user_id,
            payment_method=request.payment_method,
            items=[ItemRequest(product_id=i.product_id, quantity=i.quantity) for i in request.items],
            notes=request.notes,
            coupon_code=request.coupon_code,
            shipping_address_id=request.shipping_address_id
        )
        result = await service.checkout(dto)
    except DomainException as e:
        raise _http_error(e)

    return CheckoutResponse(
        order=OrderResponse.from_domain(result.order),
        payment_intent=PaymentIntentResponse(**result.payment_intent.model_dump()) if result.payment_intent else None,
        payment_error=result.payment_error
    )


@router.get(
    "/orders/by-number/{order_number}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_order_by_number(order_number: str, service: OrderService = Depends(get_order_service)):
    """Получить заказ по номеру"""
    try:
        order = await service.get_order_by_number(order_number)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise _http_error(e)


@router.get("/users/{user_id}/orders", response_model=OrderListResponse)
async def list_user_orders(
    user_id: str,
    status: Optional[OrderStatus] = None,
    page: int = 1,
    per_page: int = 20,
    service: OrderService = Depends(get_order_service)
):
    """История заказов пользователя, page < 1 и per_page > 100 приводятся к границам"""
    result = await service.list_user_orders(user_id, status, page, per_page)
    return OrderListResponse.from_page(result)


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_order(order_id: str, service: OrderService = Depends(get_order_service)):
    """Получить заказ по ID"""
    try:
        order = await service.get_order(order_id)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise _http_error(e)


@router.post(
    "/orders/{order_id}/cancel",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}
)
async def cancel_order(
    order_id: str,
    request: Optional[CancelOrderRequest] = None,
    service: OrderService = Depends(get_order_service)
):
    try:
        order = await service.cancel_order(order_id, request.reason if request else None)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise _http_error(e)


@router.patch(
    "/orders/{order_id}/status",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}
)
async def update_order_status(
    order_id: str,
    request: UpdateStatusRequest,
    service: OrderService = Depends(get_order_service)
):
    """Смена статуса администратором"""
    try:
        order = await service.update_status(order_id, request.status, request.notes)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise _http_error(e)


@router.post(
    "/orders/{order_id}/payment-intent",
    response_model=PaymentIntentResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
async def create_payment_intent(order_id: str, service: OrderService = Depends(get_order_service)):
    try:
        intent = await service.create_payment_intent(order_id)
        return PaymentIntentResponse(**intent.model_dump())
    except DomainException as e:
        raise _http_error(e)


@router.post(
    "/orders/{order_id}/cod-confirm",
    response_model=PaymentResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)
async def confirm_cod(order_id: str, reconciler: PaymentReconciler = Depends(get_reconciler)):
    """Подтверждение получения наличных"""
    try:
        payment = await reconciler.confirm_cod(order_id)
        return PaymentResponse.from_domain(payment)
    except DomainException as e:
        raise _http_error(e)


@router.post(
    "/payments/verify",
    response_model=PaymentResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)
async def verify_payment(request: VerifyPaymentRequest, reconciler: PaymentReconciler = Depends(get_reconciler)):
    """Клиент присылает подпись шлюза после оплаты"""
    try:
        payment = await reconciler.capture(
            request.gateway_order_id, request.gateway_payment_id, request.signature
        )
        return PaymentResponse.from_domain(payment)
    except DomainException as e:
        raise _http_error(e)


@router.post(
    "/payments/webhook",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    x_razorpay_event_id: Optional[str] = Header(default=None),
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    """Webhook платежного шлюза: подпись проверяется по сырому телу"""
    raw_payload = await request.body()
    try:
        outcome = await reconciler.handle_webhook(raw_payload, x_razorpay_signature, x_razorpay_event_id)
    except DomainException as e:
        logger.warning(f"Webhook отклонен: {e}")
        raise _http_error(e)

    return WebhookResponse(applied=outcome.applied, event_id=outcome.event_id)


@router.get("/payments/review", response_model=List[PaymentResponse])
async def review_queue(reconciler: PaymentReconciler = Depends(get_reconciler)):
    """Платежи, требующие ручной сверки"""
    payments = await reconciler.list_review_queue()
    return [PaymentResponse.from_domain(p) for p in payments]
