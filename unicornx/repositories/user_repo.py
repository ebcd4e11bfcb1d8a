from typing import Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.models.bot import Bot, BotStatus
from unicornx.models.user import User, UserRole


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def get(self, user_id: int) -> Optional[User]:
        return await self.s.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        q = await self.s.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
        return q.scalar_one_or_none()

    async def create(
        self,
        *,
        email: str,
        password_hash: Optional[str] = None,
        name: Optional[str] = None,
        role: str = UserRole.USER,
    ) -> User:
        u = User(
            email=email.strip().lower(),
            password_hash=password_hash,
            name=name,
            role=role,
            trial_used_categories=[],
        )
        self.s.add(u)
        await self.s.flush()
        await self.s.refresh(u)
        return u

    async def list_all(self) -> Sequence[User]:
        q = await self.s.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
        return q.scalars().all()

    async def list_brief(self) -> Sequence[User]:
        q = await self.s.execute(select(User).order_by(User.name.asc(), User.id.asc()))
        return q.scalars().all()

    async def count(self) -> int:
        q = await self.s.execute(select(func.count(User.id)))
        return int(q.scalar_one())

    async def bot_stats(self) -> dict[int, dict[str, int]]:
        """user_id -> {total, running, suspended} одним запросом."""
        q = await self.s.execute(
            select(Bot.user_id, Bot.status, func.count(Bot.id)).group_by(Bot.user_id, Bot.status)
        )
        out: dict[int, dict[str, int]] = {}
        for user_id, status, cnt in q.all():
            row = out.setdefault(user_id, {"total": 0, "running": 0, "suspended": 0})
            row["total"] += cnt
            if status == BotStatus.RUNNING:
                row["running"] += cnt
            elif status == BotStatus.SUSPENDED:
                row["suspended"] += cnt
        return out

    async def add_trial_category(self, user: User, category: str) -> None:
        used = list(user.trial_used_categories or [])
        if category not in used:
            used.append(category)
            # JSON-колонка: меняем ссылку, иначе ORM не увидит изменение
            user.trial_used_categories = used
            await self.s.flush()


UserRepo = UserRepository
__all__ = ["UserRepository", "UserRepo"]
