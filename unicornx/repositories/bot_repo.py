from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from unicornx.models.bot import Bot, BotStatus


class BotRepo:
    def __init__(self, s: AsyncSession) -> None:
        self.s = s

    async def get(self, bot_id: int) -> Optional[Bot]:
        return await self.s.get(Bot, bot_id)

    async def list_for_user(self, user_id: int) -> Sequence[Bot]:
        q = await self.s.execute(
            select(Bot).where(Bot.user_id == user_id).order_by(Bot.created_at.desc(), Bot.id.desc())
        )
        return q.scalars().all()

    async def list_all(self) -> Sequence[Bot]:
        q = await self.s.execute(
            select(Bot).options(selectinload(Bot.user)).order_by(Bot.updated_at.desc(), Bot.id.desc())
        )
        return q.scalars().all()

    async def find_by_name(self, user_id: int, name: str) -> Optional[Bot]:
        q = await self.s.execute(
            select(Bot).where(Bot.user_id == user_id, Bot.name == name).order_by(Bot.id).limit(1)
        )
        return q.scalar_one_or_none()

    async def create(
        self,
        *,
        user_id: int,
        name: str,
        status: str = BotStatus.WAITING_FOR_SETUP,
        api_key: str = "",
        secret_key: str = "",
        trading_view_email: Optional[str] = None,
    ) -> Bot:
        bot = Bot(
            user_id=user_id,
            name=name,
            status=status,
            api_key=api_key,
            secret_key=secret_key,
            trading_view_email=trading_view_email,
        )
        self.s.add(bot)
        await self.s.flush()
        await self.s.refresh(bot)
        return bot

    async def count_by_status(self, status: str) -> int:
        q = await self.s.execute(select(func.count(Bot.id)).where(Bot.status == status))
        return int(q.scalar_one())

    async def delete_for_user(self, user_id: int) -> int:
        res = await self.s.execute(delete(Bot).where(Bot.user_id == user_id))
        return res.rowcount or 0
