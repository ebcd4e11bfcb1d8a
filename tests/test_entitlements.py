"""
Unit tests for the bot/subscription entitlement resolver
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from unicornx.models.bot import BotStatus
from unicornx.models.subscription import SubscriptionStatus
from unicornx.services.entitlements import (
    BotEntitlement,
    MatchPolicy,
    activation_window,
    admin_sort_key,
    effective_status,
    is_entitlement_valid,
    match_subscription,
    normalize_bot_name,
    resolve_entitlements,
    targets_for_plan,
    trial_bot_name,
)

T0 = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)

STARTER = ["Bollinger Band DCA - Starter", "Smart Timer DCA - Starter", "MVRV Smart DCA - Starter"]
PRO = ["Bollinger Band DCA - Pro", "Smart Timer DCA - Pro", "MVRV Smart DCA - Pro"]
EXPERT = PRO + ["Ultimate DCA Max - Pro"]


def plan(name="Smart Timer DCA - Starter", category="Smart Timer DCA", tier="Starter", included_bots=None):
    return SimpleNamespace(name=name, category=category, tier=tier, included_bots=included_bots or [])


def sub(p, *, created=T0, start=T0, end=None, status=SubscriptionStatus.ACTIVE, activated_at=None, sid=1):
    return SimpleNamespace(
        id=sid,
        plan=p,
        status=status,
        created_at=created,
        start_date=start,
        end_date=end or start + timedelta(days=30),
        activated_at=activated_at,
    )


def bot(name, *, created=T0, status=BotStatus.WAITING_FOR_SETUP):
    return SimpleNamespace(name=name, created_at=created, status=status)


# ---------- targets ----------

@pytest.mark.parametrize("tier, expected", [
    ("Starter", STARTER),
    ("Pro", PRO),
    ("Expert", EXPERT),
])
def test_bundle_without_included_bots_uses_tier_table(tier, expected):
    p = plan(name=f"{tier} Bundle", category="Bundles", tier=tier)
    assert targets_for_plan(p) == expected


def test_included_bots_take_priority_over_tier_table():
    p = plan(name="Starter Bundle", category="Bundles", tier="Starter", included_bots=["Custom A", "Custom B"])
    assert targets_for_plan(p) == ["Custom A", "Custom B"]


def test_single_plan_targets_its_own_name():
    assert targets_for_plan(plan()) == ["Smart Timer DCA - Starter"]


def test_unknown_bundle_tier_falls_back_to_plan_name():
    p = plan(name="Mystery Bundle", category="Bundles", tier="Gold")
    assert targets_for_plan(p) == ["Mystery Bundle"]


def test_provisioning_recognises_bundle_by_name():
    # категория не Bundles, но в имени есть bundle: при выдаче ботов это бандл
    p = plan(name="Pro Bundle", category="Promo", tier="Pro")
    assert targets_for_plan(p) == ["Pro Bundle"]
    assert targets_for_plan(p, provisioning=True) == PRO


def test_trial_suffix_roundtrip():
    assert trial_bot_name("Smart Timer DCA - Pro") == "Smart Timer DCA - Pro (Trial)"
    assert trial_bot_name("Smart Timer DCA - Pro (Trial)") == "Smart Timer DCA - Pro (Trial)"
    assert normalize_bot_name("Smart Timer DCA - Pro (Trial)") == "Smart Timer DCA - Pro"
    assert normalize_bot_name("Smart Timer DCA - Pro") == "Smart Timer DCA - Pro"


# ---------- matching ----------

def test_single_match_is_assigned():
    s = sub(plan())
    [ent] = resolve_entitlements([bot("Smart Timer DCA - Starter")], [s])
    assert ent.subscription is s
    assert ent.expiration_date == s.end_date
    assert ent.is_activated is False


def test_trial_bot_matches_by_normalised_name():
    s = sub(plan())
    [ent] = resolve_entitlements([bot("Smart Timer DCA - Starter (Trial)")], [s])
    assert ent.subscription is s


def test_zero_matches_is_not_an_error():
    [ent] = resolve_entitlements([bot("Orphan Bot")], [sub(plan())])
    assert ent.subscription is None
    assert ent.expiration_date is None
    assert ent.is_activated is False
    assert ent.source_plan == "Unknown"
    assert ent.is_bundle is False
    assert ent.display_window() == (None, None)


def test_bundle_subscription_covers_many_bots():
    bundle = sub(plan(name="Starter Bundle", category="Bundles", tier="Starter"))
    ents = resolve_entitlements([bot(n) for n in STARTER], [bundle])
    assert all(e.subscription is bundle for e in ents)
    assert all(e.is_bundle for e in ents)


def test_closest_created_prefers_nearest_purchase():
    p = plan()
    old = sub(p, created=T0 - timedelta(days=60), sid=1)
    new = sub(p, created=T0 + timedelta(minutes=1), sid=2)
    b = bot("Smart Timer DCA - Starter", created=T0)
    assert match_subscription(b, [old, new], MatchPolicy.CLOSEST_CREATED) is new


def test_closest_created_tie_keeps_first():
    p = plan()
    a = sub(p, created=T0 - timedelta(hours=1), sid=1)
    b_ = sub(p, created=T0 + timedelta(hours=1), sid=2)
    assert match_subscription(bot("Smart Timer DCA - Starter"), [a, b_], MatchPolicy.CLOSEST_CREATED) is a


def test_latest_end_first_prefers_latest_end_date():
    p = plan()
    short = sub(p, end=T0 + timedelta(days=5), created=T0, sid=1)
    long_ = sub(p, end=T0 + timedelta(days=300), created=T0 - timedelta(days=90), sid=2)
    b = bot("Smart Timer DCA - Starter", created=T0)
    assert match_subscription(b, [short, long_], MatchPolicy.LATEST_END_FIRST) is long_
    # а пользовательская политика выбрала бы ближайшую по созданию
    assert match_subscription(b, [short, long_], MatchPolicy.CLOSEST_CREATED) is short


def test_latest_end_first_running_fallback_by_plan_name():
    # бот не входит в цели подписки, но запущен и называется как план
    p = plan(name="Trend Bot", category="Bundles", tier="Starter")
    s = sub(p)
    running = bot("Trend Bot (Trial)", status=BotStatus.RUNNING)
    idle = bot("Trend Bot (Trial)")
    assert match_subscription(running, [s], MatchPolicy.LATEST_END_FIRST) is s
    assert match_subscription(idle, [s], MatchPolicy.LATEST_END_FIRST) is None


def test_running_fallback_ignores_status():
    # планировщик мог уже записать EXPIRED, выбор от этого не меняется
    p = plan(name="Trend Bot", category="Bundles", tier="Starter")
    s = sub(p, status=SubscriptionStatus.EXPIRED)
    running = bot("Trend Bot (Trial)", status=BotStatus.RUNNING)
    assert match_subscription(running, [s], MatchPolicy.LATEST_END_FIRST) is s


# ---------- validity and activation ----------

def test_expired_active_subscription_is_not_valid():
    s = sub(plan(), end=T0 - timedelta(seconds=1))
    assert is_entitlement_valid(s, now=T0) is False
    assert effective_status(s, now=T0) == SubscriptionStatus.EXPIRED


def test_cancelled_subscription_keeps_access_until_end():
    s = sub(plan(), end=T0 + timedelta(days=3), status=SubscriptionStatus.CANCELLED)
    assert is_entitlement_valid(s, now=T0) is True
    assert effective_status(s, now=T0) == SubscriptionStatus.CANCELLED


def test_activation_window_keeps_duration():
    start, end = T0 - timedelta(days=10), T0 + timedelta(days=20)
    now = T0 + timedelta(days=1)
    assert activation_window(start, end, now) == (now, now + timedelta(days=30))


def test_activation_window_fallback_for_broken_duration():
    now = T0
    assert activation_window(T0, T0, now) == (now, now + timedelta(days=30))
    assert activation_window(T0, T0 - timedelta(days=1), now, timedelta(days=7)) == (now, now + timedelta(days=7))


def test_display_window_visible_when_activated_or_running():
    s = sub(plan())
    assert BotEntitlement(bot("x"), s).display_window() == (None, None)
    assert BotEntitlement(bot("x", status=BotStatus.RUNNING), s).display_window() == (s.start_date, s.end_date)
    s.activated_at = T0
    assert BotEntitlement(bot("x"), s).display_window() == (s.start_date, s.end_date)


def test_admin_sort_key_groups_by_email_then_plan_then_bot():
    bundle = sub(plan(name="Starter Bundle", category="Bundles", tier="Starter"))
    ents = resolve_entitlements([bot("Smart Timer DCA - Starter"), bot("Bollinger Band DCA - Starter")], [bundle])
    rows = [(ents[0], "b@example.com"), (ents[1], "b@example.com"), (BotEntitlement(bot("Zed"), None), "A@example.com")]
    rows.sort(key=lambda r: admin_sort_key(r[0], r[1]))
    assert [r[0].bot.name for r in rows] == ["Zed", "Bollinger Band DCA - Starter", "Smart Timer DCA - Starter"]
