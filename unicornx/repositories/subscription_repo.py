from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.models.plan import Plan
from unicornx.models.subscription import Subscription, SubscriptionStatus
from unicornx.utils.dates import now_utc


class SubscriptionRepo:
    def __init__(self, s: AsyncSession) -> None:
        self.s = s
        self.model = Subscription

    async def get(self, sub_id: int) -> Optional[Subscription]:
        return await self.s.get(Subscription, sub_id)

    async def get_by_session(self, checkout_session_id: str) -> Optional[Subscription]:
        q = await self.s.execute(
            select(Subscription).where(Subscription.checkout_session_id == checkout_session_id)
        )
        return q.scalar_one_or_none()

    async def list_for_user(self, user_id: int) -> Sequence[Subscription]:
        q = await self.s.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        return q.scalars().all()

    async def entitled_for_user(self, user_id: int) -> Sequence[Subscription]:
        """ACTIVE + CANCELLED (у отменённых доступ до end_date), свежие по end_date сначала."""
        q = await self.s.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .where(Subscription.status.in_(SubscriptionStatus.ENTITLED))
            .order_by(Subscription.end_date.desc(), Subscription.id.desc())
        )
        return q.scalars().all()

    async def all_for_user(self, user_id: int) -> Sequence[Subscription]:
        """Все статусы, свежие по end_date сначала. Вход резолвера для экранов списков."""
        q = await self.s.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.end_date.desc(), Subscription.id.desc())
        )
        return q.scalars().all()

    async def all_for_users(self, user_ids: Sequence[int]) -> dict[int, list[Subscription]]:
        if not user_ids:
            return {}
        q = await self.s.execute(
            select(Subscription)
            .where(Subscription.user_id.in_(list(user_ids)))
            .order_by(Subscription.end_date.desc(), Subscription.id.desc())
        )
        out: dict[int, list[Subscription]] = {}
        for sub in q.scalars().all():
            out.setdefault(sub.user_id, []).append(sub)
        return out

    async def latest_for_plan(self, user_id: int, plan_id: int) -> Optional[Subscription]:
        q = await self.s.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.plan_id == plan_id)
            .order_by(Subscription.end_date.desc(), Subscription.id.desc())
            .limit(1)
        )
        return q.scalar_one_or_none()

    async def latest_for_plan_name(self, user_id: int, plan_name: str) -> Optional[Subscription]:
        q = await self.s.execute(
            select(Subscription)
            .join(Plan, Plan.id == Subscription.plan_id)
            .where(Subscription.user_id == user_id, Plan.name == plan_name)
            .order_by(Subscription.end_date.desc(), Subscription.id.desc())
            .limit(1)
        )
        return q.scalar_one_or_none()

    async def active_non_bundle(self, user_id: int, exclude_id: int, bundle_category: str) -> Sequence[Subscription]:
        q = await self.s.execute(
            select(Subscription)
            .join(Plan, Plan.id == Subscription.plan_id)
            .where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.id != exclude_id,
                Plan.category != bundle_category,
            )
        )
        return q.scalars().all()

    async def create(
        self,
        *,
        user_id: int,
        plan_id: int,
        start_date: datetime,
        end_date: datetime,
        status: str = SubscriptionStatus.ACTIVE,
        is_trial: bool = False,
        checkout_session_id: Optional[str] = None,
        activated_at: Optional[datetime] = None,
    ) -> Subscription:
        sub = Subscription(
            user_id=user_id,
            plan_id=plan_id,
            start_date=start_date,
            end_date=end_date,
            status=status,
            is_trial=is_trial,
            checkout_session_id=checkout_session_id,
            activated_at=activated_at,
        )
        self.s.add(sub)
        await self.s.flush()
        await self.s.refresh(sub)
        await self.s.refresh(sub, ["plan"])
        return sub

    async def count_for_plan(self, plan_id: int) -> int:
        q = await self.s.execute(
            select(func.count(Subscription.id)).where(Subscription.plan_id == plan_id)
        )
        return int(q.scalar_one())

    async def count_valid(self, now: Optional[datetime] = None) -> int:
        now = now or now_utc()
        q = await self.s.execute(
            select(func.count(Subscription.id))
            .where(Subscription.status.in_(SubscriptionStatus.ENTITLED))
            .where(Subscription.end_date > now)
        )
        return int(q.scalar_one())

    async def mark_overdue_expired(self, now: Optional[datetime] = None) -> int:
        """Фиксирует EXPIRED у тех, у кого end_date прошла. Возвращает число строк."""
        now = now or now_utc()
        res = await self.s.execute(
            update(Subscription)
            .where(Subscription.status.in_(SubscriptionStatus.ENTITLED))
            .where(Subscription.end_date <= now)
            .values(status=SubscriptionStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount or 0

    async def delete_for_user(self, user_id: int) -> int:
        res = await self.s.execute(delete(Subscription).where(Subscription.user_id == user_id))
        return res.rowcount or 0
