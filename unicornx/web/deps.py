# unicornx/web/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.auth import decode_access_token
from unicornx.container import checkout_provider
from unicornx.db import get_session
from unicornx.errors import UnauthorizedError
from unicornx.models.user import User, UserStatus
from unicornx.providers.base import CheckoutProvider
from unicornx.repositories.user_repo import UserRepo

security = HTTPBearer(auto_error=False)


async def get_checkout_provider() -> CheckoutProvider:
    return checkout_provider()


async def _user_from_credentials(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    session: AsyncSession,
) -> Optional[User]:
    if credentials is None:
        return None
    payload = decode_access_token(credentials.credentials)
    if not payload or not str(payload.get("sub", "")).isdigit():
        return None
    user = await UserRepo(session).get(int(payload["sub"]))
    if user is not None:
        # роль из БД, не из токена: по ней обработчик ошибок решает, показывать ли детали
        request.state.user_role = user.role
    return user


async def get_current_user_optional(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session: AsyncSession = Depends(get_session),
) -> Optional[User]:
    return await _user_from_credentials(request, credentials, session)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session: AsyncSession = Depends(get_session),
) -> User:
    user = await _user_from_credentials(request, credentials, session)
    if user is None:
        raise UnauthorizedError("Unauthorized")
    if user.status == UserStatus.BANNED:
        raise UnauthorizedError("Account is banned")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise UnauthorizedError("Unauthorized")
    return user
