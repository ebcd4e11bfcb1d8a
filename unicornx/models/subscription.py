from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Boolean, ForeignKey, Integer
from sqlalchemy.orm import relationship, Mapped, mapped_column

from unicornx.models.base import Base, UTCDateTime
from unicornx.utils.dates import now_utc


class SubscriptionStatus:
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    # статусы, у которых ещё может быть доступ (если end_date не прошла)
    ENTITLED = (ACTIVE, CANCELLED)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id"), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(16), default=SubscriptionStatus.ACTIVE, nullable=False)
    start_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    is_trial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # ключ идемпотентности: id checkout-сессии провайдера (или MANUAL_<ts>)
    checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=now_utc, onupdate=now_utc)

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("Plan", back_populates="subscriptions", lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} user_id={self.user_id} plan_id={self.plan_id} "
            f"status={self.status} end_date={self.end_date}>"
        )
