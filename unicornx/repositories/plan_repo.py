from __future__ import annotations

from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.models.plan import Plan, BUNDLE_CATEGORY


class PlanRepo:
    def __init__(self, s: AsyncSession) -> None:
        self.s = s

    async def get(self, plan_id: int) -> Optional[Plan]:
        return await self.s.get(Plan, plan_id)

    async def get_by_name(self, name: str) -> Optional[Plan]:
        q = await self.s.execute(select(Plan).where(Plan.name == name).order_by(Plan.id).limit(1))
        return q.scalar_one_or_none()

    async def list_active(self) -> Sequence[Plan]:
        q = await self.s.execute(select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.id))
        return q.scalars().all()

    async def list_all(self) -> Sequence[Plan]:
        q = await self.s.execute(select(Plan).order_by(Plan.category.asc(), Plan.price_monthly.asc()))
        return q.scalars().all()

    async def categories(self) -> list[str]:
        """Категории активных планов без бандлов, по алфавиту."""
        q = await self.s.execute(
            select(Plan.category)
            .where(Plan.category != BUNDLE_CATEGORY, Plan.is_active.is_(True))
            .distinct()
            .order_by(Plan.category.asc())
        )
        return list(q.scalars().all())

    async def create(self, **values: Any) -> Plan:
        plan = Plan(**values)
        self.s.add(plan)
        await self.s.flush()
        await self.s.refresh(plan)
        return plan

    async def update(self, plan: Plan, values: dict[str, Any]) -> Plan:
        for k, v in values.items():
            if v is not None:
                setattr(plan, k, v)
        await self.s.flush()
        return plan

    async def delete(self, plan: Plan) -> None:
        await self.s.delete(plan)
        await self.s.flush()
