# unicornx/auth.py
"""Пароли (argon2) и bearer-токены (JWT, общий секрет с провайдером сессий)."""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

import jwt
from passlib.context import CryptContext

from unicornx.config import settings
from unicornx.utils.dates import now_utc

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_access_token(user_id: int, role: str, ttl: Optional[timedelta] = None) -> str:
    now = now_utc()
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + (ttl if ttl is not None else timedelta(days=settings.JWT_TTL_DAYS)),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict[str, Any]]:
    """None, если токен битый или просрочен."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None
