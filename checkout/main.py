import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI

from checkout.config import Settings
from checkout.container import Container
from checkout.database import create_database, create_tables
from checkout.presentation.api import router

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    """Фабрика приложения: uvicorn checkout.main:create_app --factory"""
    settings = settings or Settings.from_env()
    engine = None
    if container is None:
        session_factory, engine = create_database(settings.DATABASE_URL)
        container = Container(settings, session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Управление жизненным циклом приложения"""
        if engine is not None:
            await create_tables(engine)
            logger.info("Таблицы созданы")

        yield

        logger.info("Приложение останавливается...")
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="Checkout Service",
        description="Оформление заказов и сверка платежей",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.container = container
    app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app
