import asyncio
import logging

from checkout.config import Settings
from checkout.database import create_database
from checkout.infrastructure.unit_of_work import UnitOfWork
from checkout.infrastructure.kafka_producer import KafkaProducerClient
from checkout.application.process_outbox import ProcessOutboxEventsUseCase

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def outbox_worker(settings: Settings, batch_size: int = 5, interval: float = 3):
    """Доставляет уведомления о заказах из outbox в Kafka"""
    session_factory, engine = create_database(settings.DATABASE_URL)
    kafka_producer = KafkaProducerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.NOTIFICATIONS_TOPIC)
    use_case = ProcessOutboxEventsUseCase(
        unit_of_work=UnitOfWork(session_factory),
        kafka_producer=kafka_producer
    )

    await kafka_producer.start()
    logger.info("Outbox worker запущен")
    try:
        while True:
            try:
                processed = await use_case(limit=batch_size)
                if processed:
                    logger.info(f"Обработано {processed} outbox events")
                await asyncio.sleep(interval)

            except Exception as e:
                logger.error(f"Ошибка в outbox worker: {e}", exc_info=True)
                await asyncio.sleep(interval * 3)
    finally:
        await kafka_producer.stop()
        await engine.dispose()


async def main():
    await outbox_worker(Settings.from_env())


if __name__ == "__main__":
    asyncio.run(main())
