from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.models.coupon import Coupon, CouponUsage


class CouponRepo:
    def __init__(self, s: AsyncSession) -> None:
        self.s = s

    async def get(self, coupon_id: int) -> Optional[Coupon]:
        return await self.s.get(Coupon, coupon_id)

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        q = await self.s.execute(select(Coupon).where(Coupon.code == code.strip().upper()))
        return q.scalar_one_or_none()

    async def list_all(self) -> Sequence[Coupon]:
        q = await self.s.execute(select(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()))
        return q.scalars().all()

    async def create(self, **values) -> Coupon:
        c = Coupon(**values)
        self.s.add(c)
        await self.s.flush()
        await self.s.refresh(c)
        return c

    async def delete(self, coupon: Coupon) -> None:
        await self.s.delete(coupon)
        await self.s.flush()

    async def usage_count(self, coupon_id: int, user_id: int) -> int:
        q = await self.s.execute(
            select(func.count(CouponUsage.id)).where(
                CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id
            )
        )
        return int(q.scalar_one())

    async def record_usage(self, coupon: Coupon, user_id: int) -> None:
        coupon.usage_count = (coupon.usage_count or 0) + 1
        self.s.add(CouponUsage(coupon_id=coupon.id, user_id=user_id))
        await self.s.flush()

    async def delete_usages_for_user(self, user_id: int) -> int:
        res = await self.s.execute(delete(CouponUsage).where(CouponUsage.user_id == user_id))
        return res.rowcount or 0
