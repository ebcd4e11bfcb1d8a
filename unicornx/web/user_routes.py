# unicornx/web/user_routes.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.db import get_session
from unicornx.models.user import User
from unicornx.providers.base import CheckoutProvider
from unicornx.repositories.bot_repo import BotRepo
from unicornx.repositories.order_repo import OrderRepo
from unicornx.repositories.subscription_repo import SubscriptionRepo
from unicornx.services.bot_service import BotService
from unicornx.services.entitlements import MatchPolicy
from unicornx.services.subscription_service import SubscriptionService
from unicornx.services.user_service import UserService
from unicornx.web.deps import get_checkout_provider, get_current_user
from unicornx.web.schemas import (
    BotCreateIn,
    BotOut,
    BotUpdateIn,
    CancelIn,
    OrderOut,
    PasswordIn,
    ProfileUpdateIn,
    SubscriptionOut,
    UserBotOut,
    UserOut,
)

router = APIRouter(prefix="/api/user", tags=["user"])


def _bot_service(session: AsyncSession) -> BotService:
    return BotService(BotRepo(session), SubscriptionRepo(session))


@router.get("/bots", response_model=list[UserBotOut])
async def list_bots(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    ents = await _bot_service(session).list_with_entitlements(user.id, MatchPolicy.CLOSEST_CREATED)
    return [UserBotOut.from_entitlement(e) for e in ents]


@router.post("/bots", response_model=BotOut)
async def create_bot(
    body: BotCreateIn,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    bot = await _bot_service(session).create(user, body.model_dump())
    return BotOut.model_validate(bot)


@router.put("/bots", response_model=BotOut)
async def update_bot(
    body: BotUpdateIn,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    bot = await _bot_service(session).update_owned(user, body.id, body.model_dump(exclude_unset=True, exclude={"id"}))
    return BotOut.model_validate(bot)


@router.get("/subscriptions", response_model=list[SubscriptionOut])
async def list_subscriptions(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    subs = await SubscriptionService(SubscriptionRepo(session)).list_for_user(user)
    return [SubscriptionOut.from_sub(s) for s in subs]


@router.post("/subscriptions/cancel")
async def cancel_subscription(
    body: CancelIn,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    provider: CheckoutProvider = Depends(get_checkout_provider),
):
    sub = await SubscriptionService(SubscriptionRepo(session)).cancel(user, body.subscription_id, provider)
    return {
        "success": True,
        "message": "Subscription cancelled. Access remains until the end of the billing period.",
        "subscription": SubscriptionOut.from_sub(sub).model_dump(by_alias=True, mode="json"),
    }


@router.get("/orders", response_model=list[OrderOut])
async def list_orders(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    return [OrderOut.model_validate(o) for o in await OrderRepo(session).list_for_user(user.id)]


@router.get("/profile", response_model=UserOut)
async def get_profile(user: User = Depends(get_current_user)):
    return UserOut.model_validate(user)


@router.put("/profile", response_model=UserOut)
async def update_profile(
    body: ProfileUpdateIn,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    user = await UserService(session).update_profile(
        user,
        first_name=body.first_name,
        last_name=body.last_name,
        old_password=body.old_password,
        new_password=body.new_password,
    )
    return UserOut.model_validate(user)


@router.post("/verify-password")
async def verify_password(
    body: PasswordIn,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    UserService(session).check_password(user, body.password)
    return {"success": True}
