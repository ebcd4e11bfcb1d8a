from __future__ import annotations

from typing import Optional, Sequence
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from unicornx.models.order import Order, OrderStatus


class OrderRepo:
    def __init__(self, s: AsyncSession) -> None:
        self.s = s

    async def create(
        self,
        user_id: int,
        amount: int | float | Decimal,
        plan_name: str,
        checkout_session_id: str,
        payment_method: str = "card",
        status: str = OrderStatus.PAID,
        subscription_id: Optional[int] = None,
    ) -> Order:
        o = Order(
            user_id=user_id,
            subscription_id=subscription_id,
            amount=amount,
            plan_name=plan_name,
            payment_method=payment_method,
            checkout_session_id=checkout_session_id,
            status=status,
        )
        self.s.add(o)
        await self.s.flush()
        await self.s.refresh(o)
        return o

    async def get_by_session(self, checkout_session_id: str) -> Optional[Order]:
        res = await self.s.execute(
            select(Order).where(Order.checkout_session_id == checkout_session_id)
        )
        return res.scalar_one_or_none()

    async def list_for_user(self, user_id: int) -> Sequence[Order]:
        res = await self.s.execute(
            select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
        )
        return res.scalars().all()

    async def delete_for_user(self, user_id: int) -> int:
        res = await self.s.execute(delete(Order).where(Order.user_id == user_id))
        return res.rowcount or 0
