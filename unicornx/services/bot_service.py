# unicornx/services/bot_service.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from unicornx.errors import NotFoundError, ValidationFailed
from unicornx.models.bot import Bot, BotStatus
from unicornx.models.subscription import Subscription, SubscriptionStatus
from unicornx.models.user import User
from unicornx.repositories.bot_repo import BotRepo
from unicornx.repositories.subscription_repo import SubscriptionRepo
from unicornx.services.entitlements import (
    BotEntitlement,
    MatchPolicy,
    match_subscription,
    normalize_bot_name,
    resolve_entitlements,
    trial_bot_name,
)
from unicornx.services.subscription_service import SubscriptionService
from unicornx.utils.dates import now_utc

logger = logging.getLogger(__name__)

# поля, которые пользователь может менять у своего бота
_USER_EDITABLE = ("api_key", "secret_key", "trading_view_email", "webhook_url")


class BotService:
    def __init__(self, bots: BotRepo, subs: SubscriptionRepo, subs_svc: Optional[SubscriptionService] = None):
        self.bots = bots
        self.subs = subs
        self.subs_svc = subs_svc or SubscriptionService(subs)

    # ---------- чтение ----------

    async def list_with_entitlements(
        self,
        user_id: int,
        policy: MatchPolicy = MatchPolicy.CLOSEST_CREATED,
    ) -> list[BotEntitlement]:
        bots = await self.bots.list_for_user(user_id)
        # EXPIRED тоже: дата окончания видна и после того, как её зафиксировал планировщик
        subs = await self.subs.all_for_user(user_id)
        return resolve_entitlements(bots, subs, policy)

    async def get_owned(self, user: User, bot_id: int) -> Bot:
        bot = await self.bots.get(bot_id)
        if bot is None or bot.user_id != user.id:
            raise NotFoundError("Bot not found")
        return bot

    # ---------- запись ----------

    async def create(self, user: User, values: dict[str, Any]) -> Bot:
        return await self.bots.create(
            user_id=user.id,
            name=values.get("name") or "New Bot",
            status=BotStatus.SETTING_UP,
            api_key=values.get("api_key") or "",
            secret_key=values.get("secret_key") or "",
            trading_view_email=values.get("trading_view_email"),
        )

    async def update_owned(self, user: User, bot_id: int, values: dict[str, Any]) -> Bot:
        bot = await self.get_owned(user, bot_id)
        for field in _USER_EDITABLE:
            if field in values:
                setattr(bot, field, values[field])
        if values.get("status") is not None:
            await self.set_status(bot, values["status"])
        await self.bots.s.flush()
        return bot

    async def set_status(
        self,
        bot: Bot,
        status: str,
        *,
        matched: Optional[Subscription] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """
        Меняет статус бота. Первый переход в RUNNING запускает часы подписки,
        которая покрывает этого бота. Возвращает эту подписку (или None).
        """
        if status not in BotStatus.ALL:
            raise ValidationFailed(f"Unknown bot status: {status}")

        if matched is None and status == BotStatus.RUNNING:
            matched = await self.covering_subscription(bot)
        if status == BotStatus.RUNNING and matched is not None:
            self.subs_svc.activate(matched, now or now_utc())

        bot.status = status
        await self.bots.s.flush()
        logger.info("bot status: id=%s user=%s status=%s", bot.id, bot.user_id, status)
        return matched

    async def covering_subscription(self, bot: Bot) -> Optional[Subscription]:
        """Подписка для действий над ботом: как в админке, с запасным вариантом «любая ACTIVE»."""
        subs = await self.subs.entitled_for_user(bot.user_id)
        sub = match_subscription(bot, subs, MatchPolicy.LATEST_END_FIRST)
        if sub is None:
            sub = next((s for s in subs if s.status == SubscriptionStatus.ACTIVE), None)
        return sub

    # ---------- выдача ботов после оплаты ----------

    async def provision(
        self,
        user_id: int,
        names: Iterable[str],
        *,
        trial: bool = False,
    ) -> list[Bot]:
        """
        Гарантирует ботов с нужными именами, без дублей.
        Платная покупка превращает «X (Trial)» в «X»; триал создаёт «X (Trial)».
        """
        out: list[Bot] = []
        for base in names:
            base = normalize_bot_name(base)
            final_name = trial_bot_name(base) if trial else base

            if not trial:
                trial_bot = await self.bots.find_by_name(user_id, trial_bot_name(base))
                if trial_bot is not None:
                    trial_bot.name = final_name
                    await self.bots.s.flush()
                    logger.info("converted trial bot: id=%s name=%r", trial_bot.id, final_name)
                    out.append(trial_bot)
                    continue

            existing = await self.bots.find_by_name(user_id, final_name)
            if existing is not None:
                out.append(existing)
                continue

            bot = await self.bots.create(user_id=user_id, name=final_name, status=BotStatus.WAITING_FOR_SETUP)
            logger.info("provisioned bot: id=%s user=%s name=%r", bot.id, user_id, final_name)
            out.append(bot)
        return out
