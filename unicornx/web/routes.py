# unicornx/web/routes.py
from __future__ import annotations

import html
from typing import Optional

from fastapi import APIRouter, Depends, Form
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.config import settings
from unicornx.db import get_session
from unicornx.errors import NotFoundError
from unicornx.models.user import User
from unicornx.providers.base import CheckoutProvider
from unicornx.providers.fake_provider import FakeCheckoutProvider
from unicornx.repositories.plan_repo import PlanRepo
from unicornx.services.coupon_service import CouponService
from unicornx.services.user_service import UserService
from unicornx.web.deps import get_checkout_provider, get_current_user_optional
from unicornx.web.schemas import (
    CouponValidateIn,
    CouponValidateOut,
    PlanOut,
    RegisterIn,
    UserOut,
)

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/api/plans", response_model=list[PlanOut])
async def list_plans(session: AsyncSession = Depends(get_session)):
    return [PlanOut.model_validate(p) for p in await PlanRepo(session).list_active()]


@router.get("/api/pricing-categories", response_model=list[str])
async def pricing_categories(session: AsyncSession = Depends(get_session)):
    return await PlanRepo(session).categories()


@router.post("/api/register", response_model=UserOut, status_code=201)
async def register(body: RegisterIn, session: AsyncSession = Depends(get_session)):
    user = await UserService(session).register(body.email, body.password, body.first_name, body.last_name)
    return UserOut.model_validate(user)


@router.post("/api/coupons/validate", response_model=CouponValidateOut)
async def validate_coupon(
    body: CouponValidateIn,
    session: AsyncSession = Depends(get_session),
    user: Optional[User] = Depends(get_current_user_optional),
):
    coupon = await CouponService(session).validate(body.code, user)
    return CouponValidateOut(
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
    )


def _fake_provider(provider: CheckoutProvider) -> FakeCheckoutProvider:
    if not isinstance(provider, FakeCheckoutProvider):
        raise NotFoundError("Not found")
    return provider


# Простая страничка для ручного теста «фейковой оплаты»
@router.get("/payments/fake/pay", response_class=HTMLResponse)
async def fake_pay_page(session_id: str, provider: CheckoutProvider = Depends(get_checkout_provider)):
    sess = await _fake_provider(provider).retrieve_session(session_id)
    sid = html.escape(sess.id)
    return HTMLResponse(
        f"""
        <!doctype html>
        <html>
          <head><meta charset="utf-8"><title>Fake Pay</title></head>
          <body style="font-family: system-ui, -apple-system, Segoe UI, Roboto, sans-serif; max-width: 640px; margin: 40px auto;">
            <h2>Checkout</h2>
            <p>session: <code>{sid}</code></p>
            <p>plan: {html.escape(sess.metadata.get("planName", ""))}, amount: {sess.amount:.2f}</p>
            <form method="post" action="/payments/fake/confirm">
              <input type="hidden" name="session_id" value="{sid}">
              <button type="submit" style="padding:10px 16px; cursor:pointer;">Pay (fake)</button>
            </form>
          </body>
        </html>
        """
    )


# Подтверждение «фейковой оплаты» с формы выше
@router.post("/payments/fake/confirm", response_class=HTMLResponse)
async def fake_confirm(
    session_id: str = Form(...),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    sess = _fake_provider(provider).mark_paid(session_id)
    back = f"{settings.PUBLIC_BASE_URL.rstrip('/')}/payment/success?session_id={html.escape(sess.id)}"
    return HTMLResponse(f'<h3>Payment completed.</h3><p><a href="{back}">Continue</a></p>')
