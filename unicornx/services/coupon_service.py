# unicornx/services/coupon_service.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationFailed
from unicornx.models.coupon import Coupon, DiscountType
from unicornx.models.user import User
from unicornx.providers.base import CheckoutProvider
from unicornx.repositories.coupon_repo import CouponRepo
from unicornx.utils.dates import as_utc, now_utc

logger = logging.getLogger(__name__)


def coupon_problem(coupon: Coupon, now: Optional[datetime] = None) -> Optional[str]:
    """Причина, по которой купон нельзя применить (без учёта лимита на пользователя)."""
    now = now or now_utc()
    if not coupon.is_active:
        return "Coupon is inactive"
    if coupon.expiry_date is not None and coupon.expiry_date < now:
        return "Coupon has expired"
    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        return "Coupon usage limit reached"
    return None


class CouponService:
    def __init__(self, session: AsyncSession, provider: Optional[CheckoutProvider] = None) -> None:
        self.session = session
        self.provider = provider
        self.coupons = CouponRepo(session)

    async def validate(self, code: str, user: Optional[User] = None) -> Coupon:
        if not code or not code.strip():
            raise ValidationFailed("Coupon code is required")
        coupon = await self.coupons.get_by_code(code)
        if coupon is None:
            raise NotFoundError("Invalid coupon code")

        problem = coupon_problem(coupon)
        if problem:
            raise ValidationFailed(problem)

        if coupon.limit_per_user is not None:
            if user is None:
                raise UnauthorizedError("Please log in to use this coupon")
            used = await self.coupons.usage_count(coupon.id, user.id)
            if used >= coupon.limit_per_user:
                raise ValidationFailed("You have already used this coupon the maximum number of times")
        return coupon

    async def usable_for_checkout(self, code: Optional[str]) -> Optional[Coupon]:
        """Купон для checkout: невалидный просто не применяется."""
        if not code:
            return None
        coupon = await self.coupons.get_by_code(code)
        if coupon is None or coupon_problem(coupon) or not coupon.provider_coupon_id:
            logger.info("coupon not applied at checkout: %s", code)
            return None
        return coupon

    async def list_all(self) -> Sequence[Coupon]:
        return await self.coupons.list_all()

    async def create(self, values: dict[str, Any]) -> Coupon:
        code = str(values.get("code") or "").strip().upper()
        if not code:
            raise ValidationFailed("Coupon code is required")
        discount_type = values.get("discount_type") or DiscountType.PERCENTAGE
        if discount_type not in (DiscountType.PERCENTAGE, DiscountType.FIXED):
            raise ValidationFailed(f"Unknown discount type: {discount_type}")
        discount_value = float(values.get("discount_value") or 0)
        if discount_value <= 0:
            raise ValidationFailed("Discount value must be positive")
        if discount_type == DiscountType.PERCENTAGE and discount_value > 100:
            raise ValidationFailed("Percentage discount cannot exceed 100")
        if await self.coupons.get_by_code(code) is not None:
            raise ConflictError("Coupon code already exists")

        expiry = values.get("expiry_date")
        expiry = as_utc(expiry) if expiry is not None else None

        provider_coupon_id = None
        if self.provider is not None:
            provider_coupon_id = await self.provider.create_coupon(
                code=code,
                discount_type=discount_type,
                discount_value=discount_value,
                usage_limit=values.get("usage_limit"),
                redeem_by=int(expiry.timestamp()) if expiry else None,
            )

        coupon = await self.coupons.create(
            code=code,
            discount_type=discount_type,
            discount_value=discount_value,
            expiry_date=expiry,
            usage_limit=values.get("usage_limit"),
            limit_per_user=values.get("limit_per_user"),
            is_active=values.get("is_active", True),
            provider_coupon_id=provider_coupon_id,
        )
        logger.info("coupon created: code=%s provider_id=%s", coupon.code, provider_coupon_id)
        return coupon

    async def delete(self, coupon_id: int) -> None:
        coupon = await self.coupons.get(coupon_id)
        if coupon is None:
            raise NotFoundError("Coupon not found")
        await self.coupons.delete(coupon)
        logger.info("coupon deleted: id=%s code=%s", coupon_id, coupon.code)
