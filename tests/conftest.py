"""
Pytest configuration and fixtures for testing
"""
import os

# до импорта unicornx.config: Settings читается при импорте
os.environ["PAYMENT_PROVIDER"] = "fake"
os.environ["JWT_SECRET"] = "test-secret-0123456789abcdef0123456789"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PUBLIC_BASE_URL"] = "http://frontend.test"

from datetime import timedelta
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from unicornx.auth import create_access_token, hash_password
from unicornx.db import get_session
from unicornx.models import Base, Bot, Plan, Subscription, User, UserRole
from unicornx.providers.fake_provider import FakeCheckoutProvider
from unicornx.utils.dates import add_months, now_utc
from unicornx.web.deps import get_checkout_provider
from unicornx.web.server import app

PASSWORD = "secret-pass"


@pytest.fixture
async def engine(tmp_path):
    """Отдельная файловая SQLite на каждый тест: несколько сессий видят одни данные."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def provider():
    return FakeCheckoutProvider(accept_webhooks=True)


@pytest.fixture
async def client(session_factory, provider):
    async def _get_session():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_checkout_provider] = lambda: provider
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(user_id: int, role: str = UserRole.USER) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture
def make_user(session_factory):
    async def _make(
        email: str = "user@example.com",
        role: str = UserRole.USER,
        trial_used_categories: Optional[list] = None,
    ) -> int:
        async with session_factory() as s:
            user = User(
                email=email,
                name="Test User",
                password_hash=hash_password(PASSWORD),
                role=role,
                trial_used_categories=trial_used_categories or [],
            )
            s.add(user)
            await s.commit()
            return user.id
    return _make


@pytest.fixture
def make_plan(session_factory):
    async def _make(
        name: str = "Smart Timer DCA - Starter",
        category: str = "Smart Timer DCA",
        tier: str = "Starter",
        included_bots: Optional[list] = None,
        price_monthly: float = 29.0,
        price_yearly: float = 290.0,
        is_active: bool = True,
    ) -> int:
        async with session_factory() as s:
            plan = Plan(
                name=name,
                category=category,
                tier=tier,
                price_monthly=price_monthly,
                price_yearly=price_yearly,
                features=["Trading Bot Access"],
                included_bots=included_bots or [],
                is_active=is_active,
            )
            s.add(plan)
            await s.commit()
            return plan.id
    return _make


@pytest.fixture
def make_subscription(session_factory):
    async def _make(
        user_id: int,
        plan_id: int,
        *,
        months: int = 1,
        end_in: Optional[timedelta] = None,
        status: str = "ACTIVE",
        session_id: Optional[str] = None,
        activated: bool = False,
    ) -> int:
        now = now_utc()
        async with session_factory() as s:
            sub = Subscription(
                user_id=user_id,
                plan_id=plan_id,
                status=status,
                start_date=now,
                end_date=now + end_in if end_in is not None else add_months(now, months),
                activated_at=now if activated else None,
                checkout_session_id=session_id,
            )
            s.add(sub)
            await s.commit()
            return sub.id
    return _make


@pytest.fixture
def make_bot(session_factory):
    async def _make(user_id: int, name: str, status: str = "WAITING_FOR_SETUP") -> int:
        async with session_factory() as s:
            bot = Bot(user_id=user_id, name=name, status=status)
            s.add(bot)
            await s.commit()
            return bot.id
    return _make
