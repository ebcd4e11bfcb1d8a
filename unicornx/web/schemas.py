# unicornx/web/schemas.py
"""JSON-схемы API. Наружу всё в camelCase, внутри snake_case."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from unicornx.services.entitlements import BotEntitlement, effective_status


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------- планы ----------

class PlanOut(CamelModel):
    id: int
    name: str
    category: str
    tier: str
    price_monthly: float
    price_yearly: float
    features: list[str] = []
    included_bots: list[str] = []
    is_active: bool
    is_highlighted: bool
    created_at: datetime


class PlanIn(CamelModel):
    name: Optional[str] = None
    category: Optional[str] = None
    tier: Optional[str] = None
    price_monthly: Optional[float] = None
    price_yearly: Optional[float] = None
    features: Optional[list[str]] = None
    included_bots: Optional[list[str]] = None
    is_active: Optional[bool] = None
    is_highlighted: Optional[bool] = None


class PlanUpdateIn(PlanIn):
    id: int


# ---------- подписки ----------

class SubscriptionOut(CamelModel):
    id: int
    plan_id: int
    status: str
    start_date: datetime
    end_date: datetime
    activated_at: Optional[datetime] = None
    is_trial: bool
    created_at: datetime
    plan: Optional[PlanOut] = None

    @classmethod
    def from_sub(cls, sub) -> "SubscriptionOut":
        out = cls.model_validate(sub)
        # просроченная ACTIVE показывается как EXPIRED
        out.status = effective_status(sub)
        return out


class CancelIn(CamelModel):
    subscription_id: int


# ---------- боты ----------

class BotOut(CamelModel):
    id: int
    name: str
    status: str
    api_key: str = ""
    secret_key: str = ""
    trading_view_email: Optional[str] = None
    webhook_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UserBotOut(BotOut):
    expiration_date: Optional[datetime] = None
    is_activated: bool = False

    @classmethod
    def from_entitlement(cls, ent: BotEntitlement) -> "UserBotOut":
        base = BotOut.model_validate(ent.bot).model_dump()
        return cls(**base, expiration_date=ent.expiration_date, is_activated=ent.is_activated)


class UserBrief(CamelModel):
    id: int
    name: Optional[str] = None
    email: str


class AdminBotOut(BotOut):
    user: Optional[UserBrief] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    source_plan: str = "Unknown"
    is_bundle: bool = False

    @classmethod
    def from_entitlement(cls, ent: BotEntitlement, user=None) -> "AdminBotOut":
        start, end = ent.display_window()
        # bot.user может быть не загружен: берём только колонки бота
        base = BotOut.model_validate(ent.bot).model_dump()
        return cls(
            **base,
            user=UserBrief.model_validate(user) if user is not None else None,
            start_date=start,
            end_date=end,
            source_plan=ent.source_plan,
            is_bundle=ent.is_bundle,
        )


class BotCreateIn(CamelModel):
    name: Optional[str] = None
    api_key: Optional[str] = None
    secret_key: Optional[str] = None
    trading_view_email: Optional[str] = None


class BotUpdateIn(CamelModel):
    id: int
    api_key: Optional[str] = None
    secret_key: Optional[str] = None
    trading_view_email: Optional[str] = None
    webhook_url: Optional[str] = None
    status: Optional[str] = None


class AdminBotUpdateIn(CamelModel):
    bot_id: int
    status: Optional[str] = None
    end_date: Optional[datetime] = None


# ---------- пользователи ----------

class UserOut(CamelModel):
    id: int
    email: str
    name: Optional[str] = None
    role: str
    status: str
    trial_used_categories: list[str] = []
    created_at: datetime


class RegisterIn(CamelModel):
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class PasswordIn(CamelModel):
    password: str = ""


class ProfileUpdateIn(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    old_password: Optional[str] = None
    new_password: Optional[str] = None


class AdminUserOut(CamelModel):
    id: int
    name: Optional[str] = None
    email: str
    total_bots: int = 0
    running_bots: int = 0
    suspended_bots: int = 0
    status: str
    role: str
    admin_notes: str = ""
    created_at: datetime


class AdminUserUpdateIn(CamelModel):
    user_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    role: Optional[str] = None
    admin_notes: Optional[str] = None


class ResetIn(CamelModel):
    user_id: int


class StatsOut(CamelModel):
    total_users: int
    active_subscriptions: int
    running_bots: int


# ---------- заказы, checkout ----------

class OrderOut(CamelModel):
    id: int
    amount: float
    plan_name: str
    payment_method: str
    status: str
    created_at: datetime


class CheckoutIn(CamelModel):
    plan_id: int
    plan_type: str = "monthly"
    price: Optional[float] = None
    is_trial: bool = False
    coupon_code: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    payment_method: str = "card"


class CheckoutOut(CamelModel):
    session_id: str
    url: Optional[str] = None


class VerifyPaymentIn(CamelModel):
    session_id: str = ""


class VerifyPaymentOut(CamelModel):
    success: bool = True
    message: str
    already_processed: bool = False
    subscription: SubscriptionOut
    bots: list[BotOut] = []


# ---------- купоны ----------

class CouponOut(CamelModel):
    id: int
    code: str
    discount_type: str
    discount_value: float
    expiry_date: Optional[datetime] = None
    usage_limit: Optional[int] = None
    usage_count: int = 0
    limit_per_user: Optional[int] = None
    is_active: bool
    provider_coupon_id: Optional[str] = None
    created_at: datetime


class CouponIn(CamelModel):
    code: str
    discount_type: str = "PERCENTAGE"
    discount_value: float
    expiry_date: Optional[datetime] = None
    usage_limit: Optional[int] = None
    limit_per_user: Optional[int] = None
    is_active: bool = True


class CouponValidateIn(CamelModel):
    code: str = ""


class CouponValidateOut(CamelModel):
    valid: bool = True
    code: str
    discount_type: str
    discount_value: float


# ---------- ручные подписки ----------

class ManualSubIn(CamelModel):
    user_id: int
    plan_id: int
    months: int


class ManualSubOut(CamelModel):
    subscription: SubscriptionOut
    bots_created: int
    bot_names: list[str]


class ManualFormOut(CamelModel):
    plans: list[PlanOut]
    users: list[UserBrief]
