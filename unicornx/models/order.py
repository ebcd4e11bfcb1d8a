from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, Integer, Numeric, ForeignKey

from unicornx.models.base import Base, UTCDateTime
from unicornx.utils.dates import now_utc


class OrderStatus:
    PAID = "PAID"
    REFUNDED = "REFUNDED"


class Order(Base):
    """Журнал оплат: только дописываем, резолвер его не читает."""
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # какую подписку создал или продлил платёж; по ней повтор сессии находит результат
    subscription_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True, index=True
    )

    amount: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)
    plan_name: Mapped[str] = mapped_column(String(128), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="card")

    # id checkout-сессии, auto-<invoice> для рекуррентных списаний
    checkout_session_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=OrderStatus.PAID)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=now_utc, nullable=False)

    user = relationship("User", back_populates="orders")

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} user={self.user_id} plan={self.plan_name} "
            f"amount={self.amount} status={self.status}>"
        )
