# unicornx/services/subscription_service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from unicornx.config import settings
from unicornx.errors import NotFoundError, ValidationFailed
from unicornx.models.subscription import Subscription, SubscriptionStatus
from unicornx.models.user import User
from unicornx.providers.base import CheckoutProvider
from unicornx.repositories.subscription_repo import SubscriptionRepo
from unicornx.services.entitlements import activation_window, effective_status
from unicornx.utils.dates import add_months, now_utc

logger = logging.getLogger(__name__)

# planType из checkout-метаданных -> месяцев доступа
PLAN_TYPE_MONTHS = {"monthly": 1, "yearly": 12, "onetime": 1200}
MANUAL_SESSION_PREFIX = "MANUAL_"


def months_for_plan_type(plan_type: Optional[str]) -> int:
    return PLAN_TYPE_MONTHS.get((plan_type or "monthly").lower(), 1)


class SubscriptionService:
    def __init__(self, subs: SubscriptionRepo):
        self.subs = subs

    # ---------- триал ----------

    @staticmethod
    def trial_allowed(user: User) -> bool:
        """Один бесплатный триал на аккаунт, независимо от категории."""
        return not (user.trial_used_categories or [])

    def ensure_trial_allowed(self, user: User) -> None:
        if not self.trial_allowed(user):
            raise ValidationFailed("You have already used your one-time free trial account quota.")

    # ---------- продление ----------

    def renew(
        self,
        sub: Subscription,
        months: int,
        *,
        checkout_session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Продление от max(now, end_date): если ещё действует, остаток не теряется;
        если уже истекла, считаем от текущего момента и возвращаем ACTIVE.
        """
        now = now or now_utc()
        anchor = sub.end_date if sub.end_date > now else now
        sub.end_date = add_months(anchor, months)
        sub.status = SubscriptionStatus.ACTIVE
        sub.is_trial = False
        if checkout_session_id:
            sub.checkout_session_id = checkout_session_id
        logger.info(
            "subscription renewed: id=%s months=%s end_date=%s",
            sub.id, months, sub.end_date.isoformat(),
        )
        return sub

    # ---------- активация ----------

    def activate(self, sub: Subscription, now: Optional[datetime] = None) -> bool:
        """
        Первый запуск бота: окно [start, end] переезжает на [now, now + длительность].
        Повторный вызов ничего не меняет. Возвращает True, если сдвиг был.
        """
        if sub.activated_at is not None:
            return False
        now = now or now_utc()
        fallback = timedelta(days=settings.ACTIVATION_FALLBACK_DAYS)
        sub.start_date, sub.end_date = activation_window(sub.start_date, sub.end_date, now, fallback)
        sub.activated_at = now
        logger.info(
            "subscription activated: id=%s start=%s end=%s",
            sub.id, sub.start_date.isoformat(), sub.end_date.isoformat(),
        )
        return True

    # ---------- отмена ----------

    async def cancel(self, user: User, sub_id: int, provider: CheckoutProvider) -> Subscription:
        sub = await self.subs.get(sub_id)
        if sub is None or sub.user_id != user.id:
            raise NotFoundError("Subscription not found")
        if effective_status(sub) != SubscriptionStatus.ACTIVE:
            raise ValidationFailed("Subscription is not active")

        session_id = sub.checkout_session_id or ""
        if session_id and not session_id.startswith(MANUAL_SESSION_PREFIX):
            await provider.cancel_for_session(session_id)

        # end_date не трогаем: доступ до конца оплаченного периода
        sub.status = SubscriptionStatus.CANCELLED
        await self.subs.s.flush()
        logger.info("subscription cancelled: id=%s user=%s", sub.id, user.id)
        return sub

    # ---------- выборки ----------

    async def list_for_user(self, user: User) -> Sequence[Subscription]:
        return await self.subs.list_for_user(user.id)

    async def expire_overdue(self, now: Optional[datetime] = None) -> int:
        n = await self.subs.mark_overdue_expired(now)
        if n:
            logger.info("expired overdue subscriptions: %s", n)
        return n
