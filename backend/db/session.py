"""
FleetPulse Database Session Management

Async SQLAlchemy engine and session factory.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from core.config import get_settings

settings = get_settings()

_pool_kwargs = {} if settings.database_url.startswith("sqlite") else {
    "pool_size": 20,
    "max_overflow": 10,
    "pool_pre_ping": True,
}

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **_pool_kwargs,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass


@asynccontextmanager
async def worker_session() -> AsyncIterator[AsyncSession]:
    """
    Session on a private engine for Celery tasks. Each task runs its own event
    loop via asyncio.run, so the module-level engine cannot be shared.
    """
    task_engine = create_async_engine(settings.database_url)
    try:
        async with async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)() as db:
            yield db
    finally:
        await task_engine.dispose()
