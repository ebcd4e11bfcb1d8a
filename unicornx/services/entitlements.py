# unicornx/services/entitlements.py
"""
Сопоставление ботов и подписок (entitlements).

Одна реализация на всё приложение: список ботов пользователя, админские
списки ботов и проверка оплаты ходят сюда. Функции чистые: на вход ORM-объекты
(или что угодно с теми же атрибутами), на выход вычисленное представление.
Отсутствие совпадения это валидное состояние (None), а не ошибка.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from unicornx.models.bot import BotStatus
from unicornx.models.plan import BUNDLE_CATEGORY
from unicornx.models.subscription import SubscriptionStatus
from unicornx.utils.dates import now_utc

TRIAL_SUFFIX = " (Trial)"
UNKNOWN_SOURCE = "Unknown"

# Бандлы, созданные до появления included_bots. Порядок проверки важен.
_LEGACY_BUNDLE_TIERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("starter", (
        "Bollinger Band DCA - Starter",
        "Smart Timer DCA - Starter",
        "MVRV Smart DCA - Starter",
    )),
    ("pro", (
        "Bollinger Band DCA - Pro",
        "Smart Timer DCA - Pro",
        "MVRV Smart DCA - Pro",
    )),
    ("expert", (
        "Bollinger Band DCA - Pro",
        "Smart Timer DCA - Pro",
        "MVRV Smart DCA - Pro",
        "Ultimate DCA Max - Pro",
    )),
)


class MatchPolicy(str, enum.Enum):
    """Как выбирать подписку, если бот подходит под несколько."""
    # пользовательский кабинет: ближайшая по времени создания
    CLOSEST_CREATED = "closest_created"
    # админка: с самой поздней end_date, первая подходящая
    LATEST_END_FIRST = "latest_end_first"


# ---------- имена и цели ----------

def normalize_bot_name(name: str) -> str:
    if name.endswith(TRIAL_SUFFIX):
        return name[: -len(TRIAL_SUFFIX)]
    return name


def trial_bot_name(name: str) -> str:
    return f"{normalize_bot_name(name)}{TRIAL_SUFFIX}"


def is_bundle_like(plan: Any) -> bool:
    """Широкая проверка для провижининга: категория Bundles или 'bundle' в имени/категории."""
    return (
        plan.category == BUNDLE_CATEGORY
        or "bundle" in plan.name.lower()
        or "bundle" in plan.category.lower()
    )


def legacy_bundle_targets(tier: str, plan_name: Optional[str] = None) -> list[str]:
    """
    Совместимость со старыми бандлами без included_bots.
    Ключевое слово ищем в tier (и в имени плана, если передано).
    """
    haystacks = [tier.lower()]
    if plan_name:
        haystacks.append(plan_name.lower())
    for keyword, bots in _LEGACY_BUNDLE_TIERS:
        if any(keyword in h for h in haystacks):
            return list(bots)
    return []


def targets_for_plan(plan: Any, *, provisioning: bool = False) -> list[str]:
    """
    Имена ботов, на которые даёт право план.

    provisioning=True включает более широкое распознавание бандлов,
    которым пользуется выдача ботов после оплаты.
    """
    included = list(plan.included_bots or [])
    if included:
        return included

    if provisioning:
        if is_bundle_like(plan):
            legacy = legacy_bundle_targets(plan.tier, plan.name)
            if legacy:
                return legacy
    elif plan.category == BUNDLE_CATEGORY:
        legacy = legacy_bundle_targets(plan.tier)
        if legacy:
            return legacy

    return [plan.name]


# ---------- срок действия ----------

def is_entitlement_valid(sub: Any, now: Optional[datetime] = None) -> bool:
    """Единственная проверка «доступ есть»: ACTIVE/CANCELLED и end_date ещё впереди."""
    now = now or now_utc()
    return sub.status in SubscriptionStatus.ENTITLED and sub.end_date > now


def effective_status(sub: Any, now: Optional[datetime] = None) -> str:
    """Статус с учётом даты: просроченная подписка считается EXPIRED, даже если в БД ACTIVE."""
    if sub.status == SubscriptionStatus.EXPIRED:
        return SubscriptionStatus.EXPIRED
    if not is_entitlement_valid(sub, now):
        return SubscriptionStatus.EXPIRED
    return sub.status


def activation_window(
    start_date: datetime,
    end_date: datetime,
    now: datetime,
    fallback: timedelta = timedelta(days=30),
) -> tuple[datetime, datetime]:
    """Сдвигаем окно на момент активации, сохраняя оплаченную длительность."""
    duration = end_date - start_date
    if duration <= timedelta(0):
        duration = fallback
    return now, now + duration


# ---------- сопоставление ----------

@dataclass
class BotEntitlement:
    bot: Any
    subscription: Optional[Any] = None

    @property
    def expiration_date(self) -> Optional[datetime]:
        return self.subscription.end_date if self.subscription is not None else None

    @property
    def is_activated(self) -> bool:
        return self.subscription is not None and self.subscription.activated_at is not None

    @property
    def source_plan(self) -> str:
        if self.subscription is None or self.subscription.plan is None:
            return UNKNOWN_SOURCE
        return self.subscription.plan.name

    @property
    def is_bundle(self) -> bool:
        if self.subscription is None or self.subscription.plan is None:
            return False
        return self.subscription.plan.category == BUNDLE_CATEGORY

    def display_window(self) -> tuple[Optional[datetime], Optional[datetime]]:
        """Даты для админки: только если окно уже тикает (активирована или бот RUNNING)."""
        sub = self.subscription
        if sub is None:
            return None, None
        if sub.activated_at is not None or self.bot.status == BotStatus.RUNNING:
            return sub.start_date, sub.end_date
        return None, None


def _distance(bot: Any, sub: Any) -> float:
    return abs((bot.created_at - sub.created_at).total_seconds())


def match_subscription(
    bot: Any,
    subscriptions: Sequence[Any],
    policy: MatchPolicy = MatchPolicy.CLOSEST_CREATED,
    *,
    _targets: Optional[dict[int, set[str]]] = None,
) -> Optional[Any]:
    targets = _targets if _targets is not None else _targets_index(subscriptions)
    name = normalize_bot_name(bot.name)
    candidates = [s for s in subscriptions if name in targets[id(s)]]

    if policy is MatchPolicy.CLOSEST_CREATED:
        best, best_diff = None, None
        for sub in candidates:
            diff = _distance(bot, sub)
            # строгое "<": при равенстве остаётся первая по порядку
            if best_diff is None or diff < best_diff:
                best, best_diff = sub, diff
        return best

    # LATEST_END_FIRST
    ordered = sorted(candidates, key=lambda s: s.end_date, reverse=True)
    if ordered:
        return ordered[0]
    if bot.status == BotStatus.RUNNING:
        # запущенный бот без прямого совпадения: подписка с тем же именем плана, статус не важен
        for sub in sorted(subscriptions, key=lambda s: s.end_date, reverse=True):
            if sub.plan.name in (bot.name, name):
                return sub
    return None


def _targets_index(subscriptions: Iterable[Any]) -> dict[int, set[str]]:
    return {id(s): set(targets_for_plan(s.plan)) for s in subscriptions}


def resolve_entitlements(
    bots: Iterable[Any],
    subscriptions: Sequence[Any],
    policy: MatchPolicy = MatchPolicy.CLOSEST_CREATED,
) -> list[BotEntitlement]:
    """
    Для каждого бота находим подписку, которая его покрывает.
    Одна подписка может покрывать несколько ботов (бандл), из пула её не убираем.
    """
    subs = list(subscriptions)
    index = _targets_index(subs)
    return [
        BotEntitlement(bot=bot, subscription=match_subscription(bot, subs, policy, _targets=index))
        for bot in bots
    ]


def admin_sort_key(ent: BotEntitlement, email: str = "") -> tuple[str, str, str]:
    return (email.casefold(), ent.source_plan.casefold(), ent.bot.name.casefold())
