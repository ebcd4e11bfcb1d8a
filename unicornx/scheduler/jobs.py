# unicornx/scheduler/jobs.py
from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from unicornx.config import settings
from unicornx.db import SessionLocal
from unicornx.repositories.subscription_repo import SubscriptionRepo
from unicornx.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


async def expire_overdue_job(session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> int:
    """
    Периодическая задача: фиксирует EXPIRED у подписок, чья end_date прошла.
    Резолвер и так считает их просроченными, джоба только приводит БД в порядок.
    """
    factory = session_factory or SessionLocal
    async with factory() as session:
        try:
            n = await SubscriptionService(SubscriptionRepo(session)).expire_overdue()
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("expire_overdue_job failed")
            raise
    return n


def setup_scheduler(scheduler: AsyncIOScheduler) -> None:
    """
    Регистрирует все периодические задачи.
    Вызывается один раз при старте приложения.
    """
    scheduler.add_job(
        expire_overdue_job,
        trigger="interval",
        minutes=settings.EXPIRE_SWEEP_MINUTES,
        id="expire_overdue_job",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=60,    # если проспали, даём минуту на отработку
    )


def build_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TZ)
    setup_scheduler(scheduler)
    return scheduler
