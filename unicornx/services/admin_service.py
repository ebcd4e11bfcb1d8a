# unicornx/services/admin_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.errors import ConflictError, NotFoundError, ValidationFailed
from unicornx.models.bot import Bot, BotStatus
from unicornx.models.plan import Plan
from unicornx.models.subscription import Subscription, SubscriptionStatus
from unicornx.models.user import User, UserRole, UserStatus
from unicornx.repositories.bot_repo import BotRepo
from unicornx.repositories.coupon_repo import CouponRepo
from unicornx.repositories.order_repo import OrderRepo
from unicornx.repositories.plan_repo import PlanRepo
from unicornx.repositories.subscription_repo import SubscriptionRepo
from unicornx.repositories.user_repo import UserRepo
from unicornx.services.bot_service import BotService
from unicornx.services.entitlements import (
    BotEntitlement,
    MatchPolicy,
    admin_sort_key,
    resolve_entitlements,
    targets_for_plan,
)
from unicornx.services.subscription_service import MANUAL_SESSION_PREFIX, SubscriptionService
from unicornx.utils.dates import add_months, as_utc, now_utc

logger = logging.getLogger(__name__)

_PLAN_FIELDS = (
    "name", "category", "tier", "price_monthly", "price_yearly",
    "features", "included_bots", "is_active", "is_highlighted",
)


@dataclass
class UserRow:
    user: User
    total_bots: int = 0
    running_bots: int = 0
    suspended_bots: int = 0


@dataclass
class ManualResult:
    subscription: Subscription
    bots: list[Bot]


class AdminService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.users = UserRepo(session)
        self.plans = PlanRepo(session)
        self.subs_repo = SubscriptionRepo(session)
        self.bots_repo = BotRepo(session)
        self.orders = OrderRepo(session)
        self.coupons = CouponRepo(session)
        self.subs = SubscriptionService(self.subs_repo)
        self.bots = BotService(self.bots_repo, self.subs_repo, self.subs)

    # ---------- статистика ----------

    async def stats(self) -> dict[str, int]:
        return {
            "total_users": await self.users.count(),
            "active_subscriptions": await self.subs_repo.count_valid(),
            "running_bots": await self.bots_repo.count_by_status(BotStatus.RUNNING),
        }

    # ---------- пользователи ----------

    async def list_users(self) -> list[UserRow]:
        stats = await self.users.bot_stats()
        rows = []
        for u in await self.users.list_all():
            st = stats.get(u.id, {})
            rows.append(UserRow(
                user=u,
                total_bots=st.get("total", 0),
                running_bots=st.get("running", 0),
                suspended_bots=st.get("suspended", 0),
            ))
        return rows

    async def _get_user(self, user_id: int) -> User:
        user = await self.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def update_user(self, user_id: int, values: dict[str, Any]) -> User:
        user = await self._get_user(user_id)
        if values.get("status") is not None and values["status"] not in (
            UserStatus.ACTIVE, UserStatus.SUSPENDED, UserStatus.BANNED
        ):
            raise ValidationFailed(f"Unknown user status: {values['status']}")
        if values.get("role") is not None and values["role"] not in (UserRole.USER, UserRole.ADMIN):
            raise ValidationFailed(f"Unknown role: {values['role']}")
        if values.get("email"):
            email = values["email"].strip().lower()
            other = await self.users.get_by_email(email)
            if other is not None and other.id != user.id:
                raise ConflictError("Email is already in use")
            user.email = email

        for field in ("name", "status", "role", "admin_notes"):
            if values.get(field) is not None:
                setattr(user, field, values[field])
        await self.session.flush()
        logger.info("admin updated user: id=%s fields=%s", user.id, sorted(k for k, v in values.items() if v is not None))
        return user

    async def reset_user(self, user_id: int) -> dict[str, int]:
        """Полная очистка аккаунта. Всё в одной транзакции запроса."""
        user = await self._get_user(user_id)
        counts = {
            "bots": await self.bots_repo.delete_for_user(user_id),
            "orders": await self.orders.delete_for_user(user_id),
            "subscriptions": await self.subs_repo.delete_for_user(user_id),
            "coupon_usages": await self.coupons.delete_usages_for_user(user_id),
        }
        user.trial_used_categories = []
        user.status = UserStatus.ACTIVE
        await self.session.flush()
        logger.info("user reset: id=%s deleted=%s", user_id, counts)
        return counts

    # ---------- боты ----------

    async def list_bots(self) -> list[tuple[BotEntitlement, User]]:
        bots = await self.bots_repo.list_all()
        subs_by_user = await self.subs_repo.all_for_users(sorted({b.user_id for b in bots}))
        out: list[tuple[BotEntitlement, User]] = []
        for bot in bots:
            subs = subs_by_user.get(bot.user_id, [])
            ent = resolve_entitlements([bot], subs, MatchPolicy.LATEST_END_FIRST)[0]
            out.append((ent, bot.user))
        out.sort(key=lambda pair: admin_sort_key(pair[0], pair[1].email))
        return out

    async def user_bots(self, user_id: int) -> list[BotEntitlement]:
        await self._get_user(user_id)
        return await self.bots.list_with_entitlements(user_id, MatchPolicy.LATEST_END_FIRST)

    async def update_bot(
        self,
        bot_id: int,
        *,
        status: Optional[str] = None,
        end_date: Optional[datetime] = None,
    ) -> Bot:
        bot = await self.bots_repo.get(bot_id)
        if bot is None:
            raise NotFoundError("Bot not found")
        matched = await self.bots.covering_subscription(bot)

        if end_date is not None and matched is not None:
            matched.end_date = as_utc(end_date)
            logger.info("admin set end_date: sub=%s end=%s", matched.id, matched.end_date.isoformat())
        if status:
            await self.bots.set_status(bot, status, matched=matched)
        await self.session.flush()
        return bot

    # ---------- ручные подписки ----------

    async def manual_form(self) -> tuple[Sequence[Plan], Sequence[User]]:
        return await self.plans.list_active(), await self.users.list_brief()

    async def create_manual_subscription(self, user_id: int, plan_id: int, months: int) -> ManualResult:
        if months is None or months <= 0:
            raise ValidationFailed("Months must be positive")
        await self._get_user(user_id)
        plan = await self.plans.get(plan_id)
        if plan is None:
            raise NotFoundError("Plan not found")

        now = now_utc()
        sub = await self.subs_repo.create(
            user_id=user_id,
            plan_id=plan.id,
            start_date=now,
            end_date=add_months(now, months),
            status=SubscriptionStatus.ACTIVE,
            activated_at=now,
            checkout_session_id=f"{MANUAL_SESSION_PREFIX}{int(now.timestamp() * 1000)}",
        )
        bots = await self.bots.provision(user_id, targets_for_plan(plan))
        logger.info(
            "manual subscription: user=%s plan=%r months=%s bots=%s",
            user_id, plan.name, months, [b.name for b in bots],
        )
        return ManualResult(subscription=sub, bots=bots)

    # ---------- планы ----------

    async def list_plans(self) -> Sequence[Plan]:
        return await self.plans.list_all()

    async def create_plan(self, values: dict[str, Any]) -> Plan:
        for required in ("name", "category", "tier", "price_monthly", "price_yearly"):
            if values.get(required) in (None, ""):
                raise ValidationFailed("Missing required fields")
        data = {k: values[k] for k in _PLAN_FIELDS if values.get(k) is not None}
        data.setdefault("features", [])
        data.setdefault("included_bots", [])
        try:
            plan = await self.plans.create(**data)
        except IntegrityError as e:
            raise ConflictError("Plan with this name/category/tier already exists") from e
        logger.info("plan created: id=%s name=%r", plan.id, plan.name)
        return plan

    async def update_plan(self, plan_id: int, values: dict[str, Any]) -> Plan:
        plan = await self.plans.get(plan_id)
        if plan is None:
            raise NotFoundError("Plan not found")
        try:
            plan = await self.plans.update(plan, {k: values.get(k) for k in _PLAN_FIELDS})
        except IntegrityError as e:
            raise ConflictError("Plan with this name/category/tier already exists") from e
        logger.info("plan updated: id=%s", plan.id)
        return plan

    async def delete_plan(self, plan_id: int) -> bool:
        """
        True если план удалён. Если на план есть подписки, план только
        деактивируется (история сохраняется) и возвращается False.
        """
        plan = await self.plans.get(plan_id)
        if plan is None:
            raise NotFoundError("Plan not found")
        if await self.subs_repo.count_for_plan(plan_id):
            plan.is_active = False
            await self.session.flush()
            logger.info("plan deactivated instead of delete: id=%s", plan_id)
            return False
        await self.plans.delete(plan)
        logger.info("plan deleted: id=%s", plan_id)
        return True
