# unicornx/container.py
from __future__ import annotations

from functools import lru_cache

from unicornx.config import settings
from unicornx.db import engine
from unicornx.models.base import Base
from unicornx.providers.base import CheckoutProvider
from unicornx.providers.fake_provider import FakeCheckoutProvider


async def init_db() -> None:
    """
    Dev-инициализация БД: создаём таблицы, если их нет.
    В проде используй alembic upgrade head.
    """
    import unicornx.models  # noqa: F401  регистрируем все таблицы в metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def build_checkout_provider() -> CheckoutProvider:
    """Провайдер по PAYMENT_PROVIDER. Ключи проверены ещё в Settings."""
    if settings.PAYMENT_PROVIDER == "stripe":
        from unicornx.providers.stripe_provider import StripeCheckoutProvider

        return StripeCheckoutProvider(
            secret_key=settings.STRIPE_SECRET_KEY or "",
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            currency=settings.BASE_CURRENCY,
        )
    return FakeCheckoutProvider(accept_webhooks=settings.FAKE_WEBHOOKS_ENABLED)


@lru_cache(maxsize=1)
def checkout_provider() -> CheckoutProvider:
    # один на процесс: фейковый хранит сессии в памяти
    return build_checkout_provider()

