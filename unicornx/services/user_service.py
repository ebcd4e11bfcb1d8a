# unicornx/services/user_service.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from unicornx.auth import hash_password, verify_password
from unicornx.errors import ConflictError, UnauthorizedError, ValidationFailed
from unicornx.models.user import User
from unicornx.repositories.user_repo import UserRepo

logger = logging.getLogger(__name__)

MIN_PASSWORD_LEN = 6


def full_name(first: Optional[str], last: Optional[str]) -> Optional[str]:
    name = " ".join(p.strip() for p in (first, last) if p and p.strip())
    return name or None


class UserService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.users = UserRepo(session)

    async def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        if not email or not password:
            raise ValidationFailed("Missing fields")
        if len(password) < MIN_PASSWORD_LEN:
            raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LEN} characters")
        if await self.users.get_by_email(email) is not None:
            raise ConflictError("User already exists")
        try:
            user = await self.users.create(
                email=email,
                password_hash=hash_password(password),
                name=full_name(first_name, last_name),
            )
        except IntegrityError as e:
            raise ConflictError("User already exists") from e
        logger.info("user registered: id=%s", user.id)
        return user

    def check_password(self, user: User, password: str) -> None:
        if not password:
            raise ValidationFailed("Password is required")
        if not verify_password(password, user.password_hash):
            raise UnauthorizedError("Invalid password")

    async def update_profile(
        self,
        user: User,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        old_password: Optional[str] = None,
        new_password: Optional[str] = None,
    ) -> User:
        name = full_name(first_name, last_name)
        if name:
            user.name = name

        if new_password:
            if not old_password:
                raise ValidationFailed("Old password is required to set new password")
            if not verify_password(old_password, user.password_hash):
                raise ValidationFailed("Incorrect old password")
            if len(new_password) < MIN_PASSWORD_LEN:
                raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LEN} characters")
            user.password_hash = hash_password(new_password)
            logger.info("password changed: user=%s", user.id)

        await self.session.flush()
        return user
