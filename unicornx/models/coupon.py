# unicornx/models/coupon.py
from __future__ import annotations

from datetime import datetime
from sqlalchemy import String, Boolean, Float, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from unicornx.models.base import Base, UTCDateTime
from unicornx.utils.dates import now_utc


class DiscountType:
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    discount_type: Mapped[str] = mapped_column(String(16), nullable=False, default=DiscountType.PERCENTAGE)
    discount_value: Mapped[float] = mapped_column(Float, nullable=False)

    expiry_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    limit_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    provider_coupon_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=now_utc)


class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    coupon_id: Mapped[int] = mapped_column(ForeignKey("coupons.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    used_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=now_utc)
