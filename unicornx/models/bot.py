from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, ForeignKey, Integer
from sqlalchemy.orm import relationship, Mapped, mapped_column

from unicornx.models.base import Base, UTCDateTime
from unicornx.utils.dates import now_utc


class BotStatus:
    SETTING_UP = "SETTING_UP"
    WAITING_FOR_SETUP = "WAITING_FOR_SETUP"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    SUSPENDED = "SUSPENDED"
    STOPPED = "STOPPED"
    ERROR = "ERROR"

    ALL = (SETTING_UP, WAITING_FOR_SETUP, RUNNING, PAUSED, SUSPENDED, STOPPED, ERROR)


class Bot(Base):
    __tablename__ = "bots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # " (Trial)" в конце имени = триальный экземпляр
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=BotStatus.SETTING_UP)

    api_key: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    secret_key: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    trading_view_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    webhook_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=now_utc, onupdate=now_utc)

    user = relationship("User", back_populates="bots")

    def __repr__(self) -> str:
        return f"<Bot id={self.id} user_id={self.user_id} name={self.name!r} status={self.status}>"
