import os
from decimal import Decimal
from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    # Database
    POSTGRES_CONNECTION_STRING: str = ""

    # API
    SERVICE_URL: str = ""

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka.kafka.svc.cluster.local:9092"
    NOTIFICATIONS_TOPIC: str = "checkout-order.events"

    # Pricing
    CURRENCY: str = "INR"
    TAX_RATE: Decimal = Decimal("0.18")
    SHIPPING_FEE: Decimal = Decimal("50")
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("500")

    # Order numbers
    ORDER_NUMBER_PREFIX: str = "ORD"
    ORDER_NUMBER_MAX_ATTEMPTS: int = 10

    # Cash on delivery
    COD_MIN_AMOUNT: Decimal = Decimal("100")
    COD_MAX_AMOUNT: Decimal = Decimal("50000")
    COD_CHARGE_PERCENT: Decimal = Decimal("2")
    COD_CHARGE_MIN: Decimal = Decimal("20")
    COD_CHARGE_MAX: Decimal = Decimal("100")

    # Payment gateway
    GATEWAY_BASE_URL: str = "https://api.razorpay.com/v1"
    GATEWAY_KEY_ID: str = ""
    GATEWAY_KEY_SECRET: str = ""
    GATEWAY_WEBHOOK_SECRET: str = ""
    GATEWAY_TIMEOUT: float = 30.0

    # Rate limiting
    RATE_LIMIT_REQUESTS: int = 10
    RATE_LIMIT_WINDOW: float = 60.0

    @classmethod
    def from_env(cls) -> "Settings":
        """Собирает настройки из окружения (.env подхватывается автоматически)"""
        load_dotenv()
        return cls(**{key: value for key, value in os.environ.items() if key in cls.model_fields})

    @property
    def DATABASE_URL(self) -> str:
        """Асинхронный URL для приложения"""
        url = self.POSTGRES_CONNECTION_STRING
        for scheme in ("postgres://", "postgresql://"):
            if url.startswith(scheme):
                return "postgresql+asyncpg://" + url[len(scheme):]
        return url

