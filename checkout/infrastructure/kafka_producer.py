import json
import logging
from typing import Optional
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from checkout.application.interfaces import KafkaProducer

logger = logging.getLogger(__name__)


class KafkaProducerClient(KafkaProducer):
    """Публикация уведомлений о заказах; ключ сообщения = id заказа,
    чтобы события одного заказа попадали в одну партицию по порядку."""

    def __init__(self, bootstrap_servers: str, topic: str):
        self._bootstrap_servers = bootstrap_servers
        self._topic = topic
        self._producer: Optional[AIOKafkaProducer] = None

    async def start(self):
        if self._producer:
            return
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self._bootstrap_servers,
            acks="all",
            enable_idempotence=True,
            key_serializer=str.encode,
            value_serializer=lambda value: json.dumps(value, ensure_ascii=False).encode()
        )
        await self._producer.start()
        logger.info(f"Kafka producer подключен к {self._bootstrap_servers}, топик {self._topic}")

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer остановлен")

    async def publish(self, event: dict, key: str) -> bool:
        if not self._producer:
            logger.error("Kafka producer не запущен")
            return False

        try:
            await self._producer.send_and_wait(self._topic, value=event, key=key)
        except KafkaError as e:
            # событие остается в outbox до следующей попытки
            logger.error(f"Не удалось опубликовать {event.get('event_type')} для заказа {key}: {e}")
            return False

        logger.info(f"Опубликовано {event.get('event_type')} для заказа {key}")
        return True
