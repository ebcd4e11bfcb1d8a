# unicornx/web/admin_routes.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.db import get_session
from unicornx.providers.base import CheckoutProvider
from unicornx.services.admin_service import AdminService
from unicornx.services.coupon_service import CouponService
from unicornx.web.deps import get_checkout_provider, require_admin
from unicornx.web.errors import error_response
from unicornx.web.schemas import (
    AdminBotOut,
    AdminBotUpdateIn,
    AdminUserOut,
    AdminUserUpdateIn,
    BotOut,
    CouponIn,
    CouponOut,
    ManualFormOut,
    ManualSubIn,
    ManualSubOut,
    PlanIn,
    PlanOut,
    PlanUpdateIn,
    ResetIn,
    StatsOut,
    SubscriptionOut,
    UserBrief,
)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _user_row(row) -> AdminUserOut:
    u = row.user
    return AdminUserOut(
        id=u.id,
        name=u.name,
        email=u.email,
        total_bots=row.total_bots,
        running_bots=row.running_bots,
        suspended_bots=row.suspended_bots,
        status=u.status,
        role=u.role,
        admin_notes=u.admin_notes or "",
        created_at=u.created_at,
    )


# ---------- статистика / пользователи ----------

@router.get("/stats", response_model=StatsOut)
async def stats(session: AsyncSession = Depends(get_session)):
    return StatsOut(**await AdminService(session).stats())


@router.get("/users", response_model=list[AdminUserOut])
async def list_users(session: AsyncSession = Depends(get_session)):
    return [_user_row(r) for r in await AdminService(session).list_users()]


@router.put("/users", response_model=UserBrief)
async def update_user(body: AdminUserUpdateIn, session: AsyncSession = Depends(get_session)):
    user = await AdminService(session).update_user(body.user_id, body.model_dump(exclude={"user_id"}))
    return UserBrief.model_validate(user)


@router.post("/users/reset")
async def reset_user(body: ResetIn, session: AsyncSession = Depends(get_session)):
    deleted = await AdminService(session).reset_user(body.user_id)
    return {"success": True, "deleted": deleted}


@router.get("/users/{user_id}/bots", response_model=list[AdminBotOut])
async def user_bots(user_id: int, session: AsyncSession = Depends(get_session)):
    return [AdminBotOut.from_entitlement(e) for e in await AdminService(session).user_bots(user_id)]


# ---------- боты ----------

@router.get("/bots", response_model=list[AdminBotOut])
async def list_bots(session: AsyncSession = Depends(get_session)):
    return [AdminBotOut.from_entitlement(ent, user) for ent, user in await AdminService(session).list_bots()]


@router.put("/bots", response_model=BotOut)
async def update_bot(body: AdminBotUpdateIn, session: AsyncSession = Depends(get_session)):
    bot = await AdminService(session).update_bot(body.bot_id, status=body.status, end_date=body.end_date)
    return BotOut.model_validate(bot)


# ---------- пакеты (планы) ----------

@router.get("/packages", response_model=list[PlanOut])
async def list_packages(session: AsyncSession = Depends(get_session)):
    return [PlanOut.model_validate(p) for p in await AdminService(session).list_plans()]


@router.post("/packages", response_model=PlanOut)
async def create_package(body: PlanIn, session: AsyncSession = Depends(get_session)):
    return PlanOut.model_validate(await AdminService(session).create_plan(body.model_dump()))


@router.put("/packages", response_model=PlanOut)
async def update_package(body: PlanUpdateIn, session: AsyncSession = Depends(get_session)):
    plan = await AdminService(session).update_plan(body.id, body.model_dump(exclude={"id"}))
    return PlanOut.model_validate(plan)


@router.delete("/packages")
async def delete_package(id: int, request: Request, session: AsyncSession = Depends(get_session)):
    if await AdminService(session).delete_plan(id):
        return {"success": True}
    # ответ без исключения: деактивация должна закоммититься
    return error_response(
        request, 409, "conflict",
        "Plan has existing subscriptions. It has been deactivated instead of deleted to preserve history.",
    )


# ---------- ручные подписки ----------

@router.get("/subscriptions/manual", response_model=ManualFormOut)
async def manual_form(session: AsyncSession = Depends(get_session)):
    plans, users = await AdminService(session).manual_form()
    return ManualFormOut(
        plans=[PlanOut.model_validate(p) for p in plans],
        users=[UserBrief.model_validate(u) for u in users],
    )


@router.post("/subscriptions/manual", response_model=ManualSubOut)
async def create_manual(body: ManualSubIn, session: AsyncSession = Depends(get_session)):
    res = await AdminService(session).create_manual_subscription(body.user_id, body.plan_id, body.months)
    return ManualSubOut(
        subscription=SubscriptionOut.from_sub(res.subscription),
        bots_created=len(res.bots),
        bot_names=[b.name for b in res.bots],
    )


# ---------- купоны ----------

@router.get("/coupons", response_model=list[CouponOut])
async def list_coupons(session: AsyncSession = Depends(get_session)):
    return [CouponOut.model_validate(c) for c in await CouponService(session).list_all()]


@router.post("/coupons", response_model=CouponOut)
async def create_coupon(
    body: CouponIn,
    session: AsyncSession = Depends(get_session),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    coupon = await CouponService(session, provider).create(body.model_dump())
    return CouponOut.model_validate(coupon)


@router.delete("/coupons")
async def delete_coupon(id: int, session: AsyncSession = Depends(get_session)):
    await CouponService(session).delete(id)
    return {"success": True}
