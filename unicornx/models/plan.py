from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, String, Boolean, Float, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from unicornx.models.base import Base, UTCDateTime
from unicornx.utils.dates import now_utc


BUNDLE_CATEGORY = "Bundles"


class Plan(Base):
    __tablename__ = "plans"
    __table_args__ = (UniqueConstraint("name", "category", "tier"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tier: Mapped[str] = mapped_column(String(64), nullable=False)

    price_monthly: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    price_yearly: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    features: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # пусто => покупка даёт одного бота с именем плана
    included_bots: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_highlighted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=now_utc)

    subscriptions = relationship("Subscription", back_populates="plan", passive_deletes=True)

    @property
    def is_bundle(self) -> bool:
        return self.category == BUNDLE_CATEGORY

    def __repr__(self) -> str:
        return f"<Plan id={self.id} name={self.name!r} category={self.category!r} tier={self.tier!r}>"
