# unicornx/services/payment_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.config import settings
from unicornx.errors import UnauthorizedError, ValidationFailed
from unicornx.models.bot import Bot, BotStatus
from unicornx.models.plan import Plan, BUNDLE_CATEGORY
from unicornx.models.subscription import Subscription, SubscriptionStatus
from unicornx.models.user import User
from unicornx.providers.base import CheckoutProvider, CheckoutSession, WebhookEvent
from unicornx.repositories.bot_repo import BotRepo
from unicornx.repositories.coupon_repo import CouponRepo
from unicornx.repositories.order_repo import OrderRepo
from unicornx.repositories.plan_repo import PlanRepo
from unicornx.repositories.subscription_repo import SubscriptionRepo
from unicornx.repositories.user_repo import UserRepo
from unicornx.services.bot_service import BotService
from unicornx.services.entitlements import is_bundle_like, normalize_bot_name, targets_for_plan
from unicornx.services.subscription_service import SubscriptionService, months_for_plan_type
from unicornx.utils.dates import add_months, now_utc

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    subscription: Subscription
    bots: list[Bot] = field(default_factory=list)
    already_processed: bool = False
    renewal: bool = False

    @property
    def message(self) -> str:
        if self.already_processed:
            return "Session already processed"
        return "Payment processed successfully"


def _meta(sess: CheckoutSession, key: str, default: str = "") -> str:
    return str(sess.metadata.get(key) or default)


class PaymentService:
    def __init__(self, session: AsyncSession, provider: CheckoutProvider) -> None:
        self.session = session
        self.provider = provider

        self.users = UserRepo(session)
        self.plans = PlanRepo(session)
        self.subs_repo = SubscriptionRepo(session)
        self.orders = OrderRepo(session)
        self.coupons = CouponRepo(session)
        self.subs = SubscriptionService(self.subs_repo)
        self.bots = BotService(BotRepo(session), self.subs_repo, self.subs)

    # -------- helpers --------

    async def _find_processed(self, session_id: str) -> Optional[Subscription]:
        """Сессия уже учтена: либо висит на подписке, либо есть заказ с этим id."""
        sub = await self.subs_repo.get_by_session(session_id)
        if sub is not None:
            return sub
        order = await self.orders.get_by_session(session_id)
        if order is not None:
            # подписку продлили более поздней сессией
            if order.subscription_id is not None:
                sub = await self.subs_repo.get(order.subscription_id)
                if sub is not None:
                    return sub
            return await self.subs_repo.latest_for_plan_name(order.user_id, order.plan_name)
        return None

    async def _replay(self, user_id: int, sub: Subscription, session_id: str) -> VerificationResult:
        """
        Повторный вызов для той же сессии: ничего не создаём, отдаём то, что есть.
        Если ботов этой подписки уже нет, поднимаем бота-заглушку
        (имя плана из заказа, то есть из метаданных checkout, иначе из плана).
        """
        targets = set(targets_for_plan(sub.plan, provisioning=True))
        bots = [b for b in await self.bots.bots.list_for_user(user_id) if normalize_bot_name(b.name) in targets]
        if not bots:
            order = await self.orders.get_by_session(session_id)
            name = order.plan_name if order is not None and order.plan_name else sub.plan.name
            bot = await self.bots.bots.create(user_id=user_id, name=name, status=BotStatus.WAITING_FOR_SETUP)
            logger.info("replacement bot created: id=%s user=%s sub=%s", bot.id, user_id, sub.id)
            bots = [bot]
        return VerificationResult(subscription=sub, bots=bots, already_processed=True)

    async def _resolve_plan(self, sess: CheckoutSession) -> Plan:
        plan_id = _meta(sess, "planId")
        plan_name = _meta(sess, "planName")
        plan_type = _meta(sess, "planType", "monthly")

        plan: Optional[Plan] = None
        if plan_id.isdigit():
            plan = await self.plans.get(int(plan_id))
        if plan is None and plan_name:
            plan = await self.plans.get_by_name(plan_name)
        if plan is not None:
            return plan

        # плана нет в каталоге: заводим по имени "Категория - Тир"
        name = plan_name or "Trading Bot Plan"
        parts = [p.strip() for p in name.split("-")]
        amount = sess.amount
        plan = await self.plans.create(
            name=name,
            category=parts[0] or "Trading Bot",
            tier=parts[1] if len(parts) > 1 and parts[1] else "Standard",
            price_monthly=amount / 12 if plan_type == "yearly" else amount,
            price_yearly=amount if plan_type == "yearly" else amount * 12,
            features=["Trading Bot Access"],
            included_bots=[],
            is_active=True,
        )
        logger.info("auto-created plan: id=%s name=%r", plan.id, plan.name)
        return plan

    async def _cancel_overlapping(self, user_id: int, new_sub: Subscription, names: list[str], now: datetime) -> None:
        """Бандл перекрывает отдельные планы на тех же ботов: их закрываем сразу."""
        for other in await self.subs_repo.active_non_bundle(user_id, new_sub.id, BUNDLE_CATEGORY):
            if any(other.plan.category in n or other.plan.name in n for n in names):
                other.status = SubscriptionStatus.CANCELLED
                other.end_date = now
                logger.info(
                    "overlapping subscription cancelled: id=%s plan=%r bundle_sub=%s",
                    other.id, other.plan.name, new_sub.id,
                )
        await self.session.flush()

    async def _record_coupon(self, user_id: int, code: str) -> None:
        coupon = await self.coupons.get_by_code(code)
        if coupon is None:
            logger.warning("coupon from checkout not found: %s", code)
            return
        await self.coupons.record_usage(coupon, user_id)
        logger.info("coupon usage recorded: code=%s user=%s", coupon.code, user_id)

    # -------- public API --------

    async def verify_payment(self, user: User, session_id: str) -> VerificationResult:
        if not session_id:
            raise ValidationFailed("Missing session ID")
        user_id = user.id

        done = await self._find_processed(session_id)
        if done is not None:
            if done.user_id != user_id:
                raise UnauthorizedError("Checkout session belongs to another user")
            logger.info("verify_payment: session=%s already processed", session_id)
            return await self._replay(user_id, done, session_id)

        sess = await self.provider.retrieve_session(session_id)
        if not sess.is_paid:
            raise ValidationFailed("Payment not completed")
        owner = _meta(sess, "userId")
        if owner and owner != str(user_id):
            raise UnauthorizedError("Checkout session belongs to another user")

        return await self.process_checkout(user, sess)

    async def process_checkout(self, user: User, sess: CheckoutSession) -> VerificationResult:
        """Общая часть для verify-payment и вебхука checkout.session.completed."""
        user_id = user.id
        try:
            return await self._provision(user, sess)
        except IntegrityError:
            # параллельный вызов с той же сессией успел первым
            await self.session.rollback()
            done = await self._find_processed(sess.id)
            if done is None:
                raise
            logger.info("process_checkout: session=%s lost race, replaying", sess.id)
            return await self._replay(user_id, done, sess.id)

    async def _provision(self, user: User, sess: CheckoutSession) -> VerificationResult:
        now = now_utc()
        plan = await self._resolve_plan(sess)
        months = months_for_plan_type(_meta(sess, "planType", "monthly"))
        is_trial = _meta(sess, "isTrial") == "true"
        names = targets_for_plan(plan, provisioning=True)

        existing = await self.subs_repo.latest_for_plan(user.id, plan.id)
        if existing is not None:
            logger.info("renewal: user=%s plan=%r session=%s", user.id, plan.name, sess.id)
            sub = self.subs.renew(existing, months, checkout_session_id=sess.id, now=now)
            await self.session.flush()
            bots = await self.bots.provision(user.id, names, trial=False)
            renewal = True
        else:
            logger.info("new subscription: user=%s plan=%r trial=%s session=%s", user.id, plan.name, is_trial, sess.id)
            end_date = now + timedelta(days=settings.TRIAL_DAYS) if is_trial else add_months(now, months)
            sub = await self.subs_repo.create(
                user_id=user.id,
                plan_id=plan.id,
                start_date=now,
                end_date=end_date,
                is_trial=is_trial,
                checkout_session_id=sess.id,
            )
            if is_trial:
                await self.users.add_trial_category(user, _meta(sess, "category") or plan.category)
            if is_bundle_like(plan):
                await self._cancel_overlapping(user.id, sub, names, now)
            bots = await self.bots.provision(user.id, names, trial=is_trial)
            renewal = False

        await self.orders.create(
            user_id=user.id,
            amount=sess.amount,
            plan_name=_meta(sess, "planName") or plan.name,
            checkout_session_id=sess.id,
            payment_method=(sess.payment_method_types or ["card"])[0],
            subscription_id=sub.id,
        )

        coupon_code = _meta(sess, "couponCode")
        if coupon_code:
            await self._record_coupon(user.id, coupon_code)

        logger.info(
            "checkout processed: sub=%s renewal=%s bots=%s",
            sub.id, renewal, [b.id for b in bots],
        )
        return VerificationResult(subscription=sub, bots=bots, renewal=renewal)

    # -------- webhooks --------

    async def handle_event(self, event: WebhookEvent) -> None:
        if event.type in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
            await self._on_checkout_completed(event.data)
        elif event.type == "invoice.paid":
            await self._on_invoice_paid(event.data)
        elif event.type == "customer.subscription.deleted":
            await self._on_subscription_deleted(event.data)
        else:
            logger.info("webhook: unhandled event type %s", event.type)

    async def _user_from_meta(self, meta: dict[str, Any]) -> Optional[User]:
        raw = str(meta.get("userId") or "")
        if not raw.isdigit():
            return None
        return await self.users.get(int(raw))

    async def _on_checkout_completed(self, data: dict[str, Any]) -> None:
        sess = CheckoutSession(
            id=str(data.get("id") or ""),
            payment_status=str(data.get("payment_status") or "unpaid"),
            metadata={k: str(v) for k, v in (data.get("metadata") or {}).items()},
            amount_total=int(data.get("amount_total") or 0),
            payment_method_types=list(data.get("payment_method_types") or ["card"]),
        )
        if not sess.is_paid:
            # отложенная оплата: придёт checkout.session.async_payment_succeeded
            logger.info("webhook checkout: session=%s not paid (%s), skipping", sess.id, sess.payment_status)
            return
        user = await self._user_from_meta(sess.metadata)
        if user is None or not sess.id:
            logger.warning("webhook checkout: no user for session=%s", sess.id)
            return
        if await self._find_processed(sess.id) is not None:
            logger.info("webhook checkout: session=%s already processed, skipping", sess.id)
            return
        await self.process_checkout(user, sess)

    async def _on_invoice_paid(self, data: dict[str, Any]) -> None:
        provider_sub = data.get("subscription")
        if not provider_sub:
            return
        # первый инвойс подписки уже учтён через checkout.session.completed
        if data.get("billing_reason") == "subscription_create":
            return
        invoice_id = str(data.get("id") or "")
        order_key = f"auto-{invoice_id}"
        if await self.orders.get_by_session(order_key) is not None:
            return

        meta = await self.provider.subscription_metadata(str(provider_sub))
        user = await self._user_from_meta(meta)
        if user is None:
            return
        plan_name = str(meta.get("planName") or "")
        sub = await self.subs_repo.latest_for_plan_name(user.id, plan_name)
        if sub is None:
            logger.warning("recurring payment: no subscription user=%s plan=%r", user.id, plan_name)
            return

        self.subs.renew(sub, months_for_plan_type(meta.get("planType")))
        await self.orders.create(
            user_id=user.id,
            amount=(int(data.get("amount_paid") or 0)) / 100,
            plan_name=plan_name,
            checkout_session_id=order_key,
            subscription_id=sub.id,
        )
        logger.info("recurring renewal: user=%s sub=%s end_date=%s", user.id, sub.id, sub.end_date.isoformat())

    async def _on_subscription_deleted(self, data: dict[str, Any]) -> None:
        meta = data.get("metadata") or {}
        user = await self._user_from_meta(meta)
        if user is None:
            return
        sub = await self.subs_repo.latest_for_plan_name(user.id, str(meta.get("planName") or ""))
        if sub is not None:
            sub.status = SubscriptionStatus.EXPIRED
            await self.session.flush()
            logger.info("provider subscription deleted: user=%s sub=%s -> EXPIRED", user.id, sub.id)
