from typing import Tuple
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from checkout.infrastructure.db_schema import metadata


def create_database(url: str, echo: bool = False) -> Tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Создает engine и фабрику сессий (session_factory, engine)"""
    engine = create_async_engine(url, echo=echo)
    return async_sessionmaker(engine, expire_on_commit=False), engine


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
