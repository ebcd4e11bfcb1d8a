# unicornx/db.py
from __future__ import annotations

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from unicornx.config import settings


# === 1. Движок ===
# Пример DSN: postgresql+asyncpg://app:app@db:5432/unicornx
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.SQL_ECHO,
    pool_pre_ping=True,
    future=True,
)


# === 2. Сессия ===
SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# === 3. Депенденси для FastAPI ===
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Одна сессия = одна транзакция на запрос.
    Коммит, если хендлер отработал; откат при любом исключении.
    """
    async with SessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
