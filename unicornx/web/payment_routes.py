# unicornx/web/payment_routes.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.db import get_session
from unicornx.models.user import User
from unicornx.providers.base import CheckoutProvider
from unicornx.services.checkout_service import CheckoutService
from unicornx.services.payment_service import PaymentService
from unicornx.web.deps import get_checkout_provider, get_current_user
from unicornx.web.schemas import (
    BotOut,
    CheckoutIn,
    CheckoutOut,
    SubscriptionOut,
    VerifyPaymentIn,
    VerifyPaymentOut,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["payments"])


@router.post("/checkout", response_model=CheckoutOut)
async def checkout(
    body: CheckoutIn,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    sess = await CheckoutService(session, provider).start_checkout(
        user,
        plan_id=body.plan_id,
        plan_type=body.plan_type,
        price=body.price,
        is_trial=body.is_trial,
        coupon_code=body.coupon_code,
        first_name=body.first_name,
        last_name=body.last_name,
        payment_method=body.payment_method,
    )
    return CheckoutOut(session_id=sess.id, url=sess.url)


@router.post("/verify-payment", response_model=VerifyPaymentOut)
async def verify_payment(
    body: VerifyPaymentIn,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    res = await PaymentService(session, provider).verify_payment(user, body.session_id)
    return VerifyPaymentOut(
        message=res.message,
        already_processed=res.already_processed,
        subscription=SubscriptionOut.from_sub(res.subscription),
        bots=[BotOut.model_validate(b) for b in res.bots],
    )


@router.post("/webhooks/stripe")
async def provider_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    payload = await request.body()
    event = provider.parse_webhook(payload, request.headers.get("stripe-signature"))
    log.info("webhook received: type=%s", event.type)
    await PaymentService(session, provider).handle_event(event)
    return {"received": True}
