"""Асинхронный движок SQLAlchemy и фабрика сессий."""

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tabroom.core.config import settings

engine = create_async_engine(settings.database_url, echo=False, isolation_level="SERIALIZABLE")
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session
