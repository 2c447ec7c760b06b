import httpx
import logging
from typing import Optional

from checkout.domain.exceptions import GatewayError
from checkout.application.interfaces import GatewayClient

logger = logging.getLogger(__name__)


class HTTPGatewayClient(GatewayClient):
    def __init__(self, base_url: str, key_id: str, key_secret: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = base_url.rstrip("/")
        self._key_id = key_id
        self._key_secret = key_secret
        self._timeout = timeout
        self._transport = transport

    async def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/orders",
                    json={
                        "amount": amount,
                        "currency": currency,
                        "receipt": receipt,
                        "notes": notes
                    },
                    auth=(self._key_id, self._key_secret),
                    headers={"Content-Type": "application/json"},
                    timeout=self._timeout
                )

                if response.status_code in (200, 201):
                    return response.json()
                else:
                    raise GatewayError(f"Payment gateway ошибка: {response.status_code} - {response.text}")

        except httpx.TimeoutException as e:
            # платеж остается pending, результат придет webhook
            logger.error(f"Payment gateway не ответил за {self._timeout}s: {e}")
            raise GatewayError(f"Payment gateway timeout: {str(e)}")
        except httpx.RequestError as e:
            logger.error(f"Payment gateway ошибка подключения: {e}")
            raise GatewayError(f"Payment gateway не доступен: {str(e)}")
