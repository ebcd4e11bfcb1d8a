# unicornx/services/checkout_service.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.config import settings
from unicornx.errors import NotFoundError, ValidationFailed
from unicornx.models.user import User
from unicornx.providers.base import CheckoutProvider, CheckoutRequest, CheckoutSession
from unicornx.repositories.plan_repo import PlanRepo
from unicornx.repositories.subscription_repo import SubscriptionRepo
from unicornx.services.coupon_service import CouponService
from unicornx.services.subscription_service import PLAN_TYPE_MONTHS, SubscriptionService
from unicornx.services.user_service import full_name

logger = logging.getLogger(__name__)

_INTERVALS = {"monthly": "month", "yearly": "year"}


class CheckoutService:
    def __init__(self, session: AsyncSession, provider: CheckoutProvider) -> None:
        self.session = session
        self.provider = provider
        self.plans = PlanRepo(session)
        self.subs = SubscriptionService(SubscriptionRepo(session))
        self.coupons = CouponService(session, provider)

    async def start_checkout(
        self,
        user: User,
        *,
        plan_id: int,
        plan_type: str = "monthly",
        price: Optional[float] = None,
        is_trial: bool = False,
        coupon_code: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        payment_method: str = "card",
    ) -> CheckoutSession:
        plan_type = (plan_type or "monthly").lower()
        if plan_type not in PLAN_TYPE_MONTHS:
            raise ValidationFailed(f"Unknown plan type: {plan_type}")

        plan = await self.plans.get(plan_id)
        if plan is None:
            raise NotFoundError("Plan not found")
        if not plan.is_active:
            raise ValidationFailed("Plan is not available")

        if plan_type == "monthly":
            amount = plan.price_monthly
        elif plan_type == "yearly":
            amount = plan.price_yearly
        else:
            amount = price or 0
        if amount <= 0:
            raise ValidationFailed("Invalid price")

        mode = "payment" if plan_type == "onetime" else "subscription"
        if is_trial:
            if mode != "subscription":
                raise ValidationFailed("Free trial is only available for subscriptions")
            self.subs.ensure_trial_allowed(user)

        coupon = await self.coupons.usable_for_checkout(coupon_code)

        name = full_name(first_name, last_name)
        if name and name != user.name:
            user.name = name
            await self.session.flush()

        base = settings.PUBLIC_BASE_URL.rstrip("/")
        metadata = {
            "userId": str(user.id),
            "planId": str(plan.id),
            "planName": plan.name,
            "planType": plan_type,
            "category": plan.category,
            "isTrial": "true" if is_trial else "false",
        }
        if coupon is not None:
            metadata["couponCode"] = coupon.code

        req = CheckoutRequest(
            user_id=user.id,
            email=user.email,
            product_name=plan.name,
            unit_amount=int(round(amount * 100)),
            mode=mode,
            interval=_INTERVALS.get(plan_type),
            trial_days=settings.TRIAL_DAYS if is_trial else None,
            provider_coupon_id=coupon.provider_coupon_id if coupon is not None else None,
            payment_method_types=[payment_method or "card"],
            success_url=f"{base}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/pricing",
            metadata=metadata,
        )
        sess = await self.provider.create_session(req)
        logger.info(
            "checkout started: user=%s plan=%r type=%s trial=%s session=%s",
            user.id, plan.name, plan_type, is_trial, sess.id,
        )
        return sess
