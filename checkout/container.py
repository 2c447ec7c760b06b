from typing import Optional

from checkout.config import Settings
from checkout.domain.models import PaymentMethod
from checkout.domain.pricing import PricingPolicy
from checkout.domain.state_machine import OrderStateMachine, PaymentStateMachine
from checkout.application.coupons import NoCouponService
from checkout.application.interfaces import CouponService, GatewayClient, RateLimiter
from checkout.application.notifications import OutboxNotificationDispatcher
from checkout.application.order_service import OrderService
from checkout.application.payment_gateway import CashOnDelivery, OnlineGateway
from checkout.application.payment_reconciler import PaymentReconciler
from checkout.application.stock_ledger import StockLedger
from checkout.infrastructure.http_clients import HTTPGatewayClient
from checkout.infrastructure.rate_limiter import SlidingWindowRateLimiter
from checkout.infrastructure.unit_of_work import UnitOfWork


class Container:
    """Сборка сервисов: настройки и клиенты передаются явно в конструкторы"""

    def __init__(
        self,
        settings: Settings,
        session_factory,
        gateway_client: Optional[GatewayClient] = None,
        coupons: Optional[CouponService] = None,
        rate_limiter: Optional[RateLimiter] = None
    ):
        self.settings = settings
        self.uow = UnitOfWork(session_factory)
        self.payment_states = PaymentStateMachine()

        self.gateway_client = gateway_client or HTTPGatewayClient(
            settings.GATEWAY_BASE_URL,
            settings.GATEWAY_KEY_ID,
            settings.GATEWAY_KEY_SECRET,
            timeout=settings.GATEWAY_TIMEOUT
        )
        self.gateways = {
            PaymentMethod.ONLINE: OnlineGateway(
                self.uow,
                self.gateway_client,
                key_secret=settings.GATEWAY_KEY_SECRET,
                webhook_secret=settings.GATEWAY_WEBHOOK_SECRET,
                currency=settings.CURRENCY,
                payment_states=self.payment_states
            ),
            PaymentMethod.COD: CashOnDelivery(
                self.uow,
                min_amount=settings.COD_MIN_AMOUNT,
                max_amount=settings.COD_MAX_AMOUNT,
                charge_percent=settings.COD_CHARGE_PERCENT,
                charge_min=settings.COD_CHARGE_MIN,
                charge_max=settings.COD_CHARGE_MAX
            ),
        }

        self.order_service = OrderService(
            self.uow,
            stock_ledger=StockLedger(),
            state_machine=OrderStateMachine(),
            pricing=PricingPolicy(
                tax_rate=settings.TAX_RATE,
                shipping_fee=settings.SHIPPING_FEE,
                free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD
            ),
            coupons=coupons or NoCouponService(),
            notifications=OutboxNotificationDispatcher(),
            gateways=self.gateways,
            currency=settings.CURRENCY,
            order_number_prefix=settings.ORDER_NUMBER_PREFIX,
            order_number_attempts=settings.ORDER_NUMBER_MAX_ATTEMPTS
        )
        self.reconciler = PaymentReconciler(
            self.uow,
            gateways=self.gateways,
            order_service=self.order_service,
            payment_states=self.payment_states
        )
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW
        )
