"""
Tests for payment verification: idempotency, renewal vs new purchase, provisioning
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from unicornx.errors import UnauthorizedError, ValidationFailed
from unicornx.models import Bot, Coupon, CouponUsage, Order, Plan, Subscription, User
from unicornx.models.subscription import SubscriptionStatus
from unicornx.providers.base import CheckoutSession, WebhookEvent
from unicornx.services.payment_service import PaymentService
from unicornx.utils.dates import add_months, now_utc

STARTER = ["Bollinger Band DCA - Starter", "Smart Timer DCA - Starter", "MVRV Smart DCA - Starter"]


def paid_session(provider, sid, user_id, plan_id=None, plan_name="Smart Timer DCA - Starter", **meta):
    metadata = {"userId": str(user_id), "planName": plan_name, "planType": "monthly", "isTrial": "false"}
    if plan_id is not None:
        metadata["planId"] = str(plan_id)
    metadata.update({k: str(v) for k, v in meta.items()})
    return provider.put_session(CheckoutSession(
        id=sid, payment_status="paid", metadata=metadata, amount_total=2900,
    ))


async def verify(session_factory, provider, user_id, sid):
    async with session_factory() as s:
        user = await s.get(User, user_id)
        res = await PaymentService(s, provider).verify_payment(user, sid)
        await s.commit()
        return res


async def count(session_factory, model, *where):
    async with session_factory() as s:
        stmt = select(func.count()).select_from(model)
        if where:
            stmt = stmt.where(*where)
        return (await s.execute(stmt)).scalar_one()


async def user_bots(session_factory, user_id):
    async with session_factory() as s:
        q = await s.execute(select(Bot).where(Bot.user_id == user_id).order_by(Bot.id))
        return q.scalars().all()


@pytest.mark.asyncio
async def test_verification_is_idempotent(session_factory, provider, make_user, make_plan):
    uid = await make_user()
    pid = await make_plan()
    paid_session(provider, "cs_1", uid, pid)

    first = await verify(session_factory, provider, uid, "cs_1")
    second = await verify(session_factory, provider, uid, "cs_1")

    assert first.already_processed is False
    assert second.already_processed is True
    assert second.subscription.id == first.subscription.id
    assert await count(session_factory, Subscription) == 1
    assert await count(session_factory, Order) == 1
    assert [b.name for b in await user_bots(session_factory, uid)] == ["Smart Timer DCA - Starter"]


@pytest.mark.asyncio
async def test_new_purchase_dates_and_order(session_factory, provider, make_user, make_plan):
    uid = await make_user()
    pid = await make_plan()
    paid_session(provider, "cs_new", uid, pid, planType="yearly")

    res = await verify(session_factory, provider, uid, "cs_new")
    sub = res.subscription
    assert sub.end_date == add_months(sub.start_date, 12)
    assert sub.activated_at is None
    assert sub.checkout_session_id == "cs_new"
    assert res.bots[0].status == "WAITING_FOR_SETUP"

    async with session_factory() as s:
        order = (await s.execute(select(Order))).scalar_one()
    assert float(order.amount) == 29.0
    assert order.plan_name == "Smart Timer DCA - Starter"


@pytest.mark.asyncio
async def test_unpaid_session_is_rejected(session_factory, provider, make_user, make_plan):
    uid = await make_user()
    pid = await make_plan()
    provider.put_session(CheckoutSession(id="cs_unpaid", payment_status="unpaid", metadata={"planId": str(pid)}))
    with pytest.raises(ValidationFailed):
        await verify(session_factory, provider, uid, "cs_unpaid")
    assert await count(session_factory, Subscription) == 0


@pytest.mark.asyncio
async def test_session_of_another_user_is_rejected(session_factory, provider, make_user, make_plan):
    owner = await make_user("owner@example.com")
    thief = await make_user("thief@example.com")
    paid_session(provider, "cs_x", owner, await make_plan())
    with pytest.raises(UnauthorizedError):
        await verify(session_factory, provider, thief, "cs_x")


@pytest.mark.asyncio
async def test_replay_recreates_missing_bot(session_factory, provider, make_user, make_plan):
    uid = await make_user()
    pid = await make_plan()
    paid_session(provider, "cs_1", uid, pid)
    await verify(session_factory, provider, uid, "cs_1")

    async with session_factory() as s:
        for b in (await s.execute(select(Bot))).scalars():
            await s.delete(b)
        await s.commit()

    res = await verify(session_factory, provider, uid, "cs_1")
    assert res.already_processed is True
    bots = await user_bots(session_factory, uid)
    assert [(b.name, b.status) for b in bots] == [("Smart Timer DCA - Starter", "WAITING_FOR_SETUP")]


@pytest.mark.asyncio
async def test_renewal_before_expiry_extends_existing(session_factory, provider, make_user, make_plan, make_subscription):
    uid = await make_user()
    pid = await make_plan()
    sid = await make_subscription(uid, pid, end_in=timedelta(days=10), session_id="cs_old")
    async with session_factory() as s:
        old_end = (await s.get(Subscription, sid)).end_date

    paid_session(provider, "cs_renew", uid, pid)
    res = await verify(session_factory, provider, uid, "cs_renew")

    assert res.renewal is True
    assert res.subscription.id == sid
    assert res.subscription.end_date == add_months(old_end, 1)
    assert res.subscription.checkout_session_id == "cs_renew"
    assert await count(session_factory, Subscription) == 1

    again = await verify(session_factory, provider, uid, "cs_renew")
    assert again.already_processed is True


@pytest.mark.asyncio
async def test_replay_of_renewed_session_after_plan_rename(session_factory, provider, make_user, make_plan):
    uid = await make_user()
    pid = await make_plan()
    paid_session(provider, "cs_1", uid, pid)
    paid_session(provider, "cs_2", uid, pid)
    first = await verify(session_factory, provider, uid, "cs_1")
    await verify(session_factory, provider, uid, "cs_2")

    async with session_factory() as s:
        (await s.get(Plan, pid)).name = "Smart Timer DCA - Starter v2"
        await s.commit()

    again = await verify(session_factory, provider, uid, "cs_1")
    assert again.already_processed is True
    assert again.subscription.id == first.subscription.id
    assert await count(session_factory, Subscription) == 1
    assert await count(session_factory, Order, Order.checkout_session_id == "cs_1") == 1
    assert await count(session_factory, Order, Order.subscription_id == first.subscription.id) == 2


@pytest.mark.asyncio
async def test_renewal_after_expiry_restarts_from_now(session_factory, provider, make_user, make_plan, make_subscription):
    uid = await make_user()
    pid = await make_plan()
    sid = await make_subscription(
        uid, pid, end_in=timedelta(days=-3), status=SubscriptionStatus.EXPIRED, session_id="cs_old",
    )
    paid_session(provider, "cs_back", uid, pid)
    before = now_utc()
    res = await verify(session_factory, provider, uid, "cs_back")
    after = now_utc()

    assert res.subscription.id == sid
    assert res.subscription.status == SubscriptionStatus.ACTIVE
    assert add_months(before, 1) <= res.subscription.end_date <= add_months(after, 1)


@pytest.mark.asyncio
async def test_trial_purchase_creates_trial_bot_and_records_category(session_factory, provider, make_user, make_plan):
    uid = await make_user()
    pid = await make_plan()
    paid_session(provider, "cs_trial", uid, pid, isTrial="true", category="Smart Timer DCA")

    res = await verify(session_factory, provider, uid, "cs_trial")
    sub = res.subscription
    assert sub.is_trial is True
    assert sub.end_date - sub.start_date == timedelta(days=7)
    assert [b.name for b in res.bots] == ["Smart Timer DCA - Starter (Trial)"]

    async with session_factory() as s:
        user = await s.get(User, uid)
        assert user.trial_used_categories == ["Smart Timer DCA"]


@pytest.mark.asyncio
async def test_paid_purchase_converts_trial_bot(session_factory, provider, make_user, make_plan):
    uid = await make_user()
    pid = await make_plan()
    paid_session(provider, "cs_trial", uid, pid, isTrial="true")
    await verify(session_factory, provider, uid, "cs_trial")

    paid_session(provider, "cs_paid", uid, pid)
    res = await verify(session_factory, provider, uid, "cs_paid")

    assert res.renewal is True
    assert res.subscription.is_trial is False
    bots = await user_bots(session_factory, uid)
    assert [b.name for b in bots] == ["Smart Timer DCA - Starter"]


@pytest.mark.asyncio
async def test_bundle_purchase_provisions_tier_bots_and_cancels_overlap(
    session_factory, provider, make_user, make_plan, make_subscription,
):
    uid = await make_user()
    single = await make_plan()
    single_sub = await make_subscription(uid, single, session_id="cs_single")
    bundle = await make_plan(name="Starter Bundle", category="Bundles", tier="Starter", price_monthly=79)

    paid_session(provider, "cs_bundle", uid, bundle, plan_name="Starter Bundle")
    res = await verify(session_factory, provider, uid, "cs_bundle")

    assert sorted(b.name for b in res.bots) == sorted(STARTER)
    assert await count(session_factory, Bot, Bot.user_id == uid) == 3
    async with session_factory() as s:
        old = await s.get(Subscription, single_sub)
        assert old.status == SubscriptionStatus.CANCELLED


@pytest.mark.asyncio
async def test_bundle_reuses_existing_bots(session_factory, provider, make_user, make_plan, make_bot):
    uid = await make_user()
    await make_bot(uid, "Smart Timer DCA - Starter", status="RUNNING")
    bundle = await make_plan(name="Starter Bundle", category="Bundles", tier="Starter")
    paid_session(provider, "cs_bundle", uid, bundle, plan_name="Starter Bundle")

    await verify(session_factory, provider, uid, "cs_bundle")
    bots = await user_bots(session_factory, uid)
    assert len(bots) == 3
    assert [b.status for b in bots if b.name == "Smart Timer DCA - Starter"] == ["RUNNING"]


@pytest.mark.asyncio
async def test_unknown_plan_is_created_from_session(session_factory, provider, make_user):
    uid = await make_user()
    paid_session(provider, "cs_auto", uid, None, plan_name="Grid Bot - Elite")
    res = await verify(session_factory, provider, uid, "cs_auto")

    async with session_factory() as s:
        plan = (await s.execute(select(Plan))).scalar_one()
    assert (plan.name, plan.category, plan.tier) == ("Grid Bot - Elite", "Grid Bot", "Elite")
    assert res.subscription.plan_id == plan.id


@pytest.mark.asyncio
async def test_coupon_usage_recorded(session_factory, provider, make_user, make_plan):
    uid = await make_user()
    pid = await make_plan()
    async with session_factory() as s:
        s.add(Coupon(code="SAVE10", discount_type="PERCENTAGE", discount_value=10, provider_coupon_id="SAVE10"))
        await s.commit()

    paid_session(provider, "cs_c", uid, pid, couponCode="SAVE10")
    await verify(session_factory, provider, uid, "cs_c")

    assert await count(session_factory, CouponUsage, CouponUsage.user_id == uid) == 1
    async with session_factory() as s:
        coupon = (await s.execute(select(Coupon))).scalar_one()
        assert coupon.usage_count == 1


# ---------- webhooks ----------

@pytest.mark.asyncio
async def test_checkout_completed_webhook_provisions_once(session_factory, provider, make_user, make_plan):
    uid = await make_user()
    pid = await make_plan()
    event = WebhookEvent(type="checkout.session.completed", data={
        "id": "cs_hook",
        "payment_status": "paid",
        "amount_total": 2900,
        "metadata": {"userId": str(uid), "planId": str(pid), "planName": "Smart Timer DCA - Starter", "planType": "monthly"},
    })
    for _ in range(2):
        async with session_factory() as s:
            await PaymentService(s, provider).handle_event(event)
            await s.commit()

    assert await count(session_factory, Subscription) == 1
    assert await count(session_factory, Bot) == 1

    # verify-payment после вебхука ничего не дублирует
    provider.put_session(CheckoutSession(id="cs_hook", payment_status="paid", metadata={"userId": str(uid)}))
    res = await verify(session_factory, provider, uid, "cs_hook")
    assert res.already_processed is True


@pytest.mark.asyncio
async def test_invoice_paid_extends_subscription(session_factory, provider, make_user, make_plan, make_subscription):
    uid = await make_user()
    pid = await make_plan()
    sid = await make_subscription(uid, pid, end_in=timedelta(days=2), session_id="cs_first")
    async with session_factory() as s:
        old_end = (await s.get(Subscription, sid)).end_date

    provider.subscriptions["sub_1"] = {"userId": str(uid), "planName": "Smart Timer DCA - Starter", "planType": "monthly"}
    event = WebhookEvent(type="invoice.paid", data={
        "id": "in_1", "subscription": "sub_1", "amount_paid": 2900, "billing_reason": "subscription_cycle",
    })
    for _ in range(2):
        async with session_factory() as s:
            await PaymentService(s, provider).handle_event(event)
            await s.commit()

    async with session_factory() as s:
        sub = await s.get(Subscription, sid)
        assert sub.end_date == add_months(old_end, 1)
        order = (await s.execute(select(Order))).scalar_one()
        assert order.checkout_session_id == "auto-in_1"
        assert order.subscription_id == sid


@pytest.mark.asyncio
async def test_first_invoice_is_ignored(session_factory, provider, make_user, make_plan, make_subscription):
    uid = await make_user()
    pid = await make_plan()
    await make_subscription(uid, pid, session_id="cs_first")
    provider.subscriptions["sub_1"] = {"userId": str(uid), "planName": "Smart Timer DCA - Starter"}
    event = WebhookEvent(type="invoice.paid", data={
        "id": "in_0", "subscription": "sub_1", "amount_paid": 2900, "billing_reason": "subscription_create",
    })
    async with session_factory() as s:
        await PaymentService(s, provider).handle_event(event)
        await s.commit()
    assert await count(session_factory, Order) == 0


@pytest.mark.asyncio
async def test_subscription_deleted_webhook_expires(session_factory, provider, make_user, make_plan, make_subscription):
    uid = await make_user()
    pid = await make_plan()
    sid = await make_subscription(uid, pid, session_id="cs_first")
    event = WebhookEvent(type="customer.subscription.deleted", data={
        "id": "sub_1", "metadata": {"userId": str(uid), "planName": "Smart Timer DCA - Starter"},
    })
    async with session_factory() as s:
        await PaymentService(s, provider).handle_event(event)
        await s.commit()
    async with session_factory() as s:
        assert (await s.get(Subscription, sid)).status == SubscriptionStatus.EXPIRED
