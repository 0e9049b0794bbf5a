"""Authentication gate: bearer token to user identity.

Sessions are rows in ``user_sessions``; a token resolves only while it is
unexpired and its user is active. The resolved identity never carries the
password hash or the second-factor secret.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from trade_ledger.config import SESSION_TTL_HOURS, SESSION_REMEMBER_DAYS
from trade_ledger.errors import Conflict, Unauthorized, ValidationError
from trade_ledger.logger import logger
from trade_ledger.users.models import UserModel, SessionModel, RoleEnum, UserStatusEnum
from trade_ledger.users.utils import generate_session_token, hash_password, verify_password


@dataclass(frozen=True)
class AuthenticatedUser:
    id: int
    email: str
    first_name: str
    last_name: str
    role: RoleEnum
    status: UserStatusEnum

    @classmethod
    def from_model(cls, user: UserModel) -> 'AuthenticatedUser':
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            status=user.status
        )

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.ADMIN


async def resolve(session: AsyncSession, token: Optional[str]) -> Optional[AuthenticatedUser]:
    if not token:
        return None

    now = datetime.now(timezone.utc)
    user = await session.scalar(
        select(UserModel)
        .join(SessionModel, SessionModel.user_id == UserModel.id)
        .where(SessionModel.token == token)
        .where(SessionModel.expires_at > now)
        .where(UserModel.status == UserStatusEnum.ACTIVE)
    )
    if not user:
        logger.debug('[resolve] Token did not resolve to an active session')
        return None

    return AuthenticatedUser.from_model(user)


async def create_session(session: AsyncSession, user_id: int, remember: bool = False) -> SessionModel:
    ttl = timedelta(days=SESSION_REMEMBER_DAYS) if remember else timedelta(hours=SESSION_TTL_HOURS)
    new_session = SessionModel(
        token=generate_session_token(),
        user_id=user_id,
        expires_at=datetime.now(timezone.utc) + ttl
    )
    session.add(new_session)
    await session.flush()
    logger.info(f'[create_session] Session created: user_id={user_id}, remember={remember}, expires_at={new_session.expires_at}')
    return new_session


async def delete_session(session: AsyncSession, token: str):
    await session.execute(delete(SessionModel).where(SessionModel.token == token))


async def register_user(
    session: AsyncSession,
    email: str,
    password: str,
    first_name: str = '',
    last_name: str = '',
    role: RoleEnum = RoleEnum.USER
) -> UserModel:
    email = email.strip().lower()
    if len(password) < 8:
        raise ValidationError('Password must be at least 8 characters')

    existing = await session.scalar(select(UserModel.id).where(UserModel.email == email))
    if existing:
        logger.warning(f'[register_user] Email already registered: email={email}')
        raise Conflict('User with this email already exists')

    user = UserModel(
        email=email,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        role=role,
        password_hash=hash_password(password)
    )
    session.add(user)
    await session.flush()
    logger.info(f'[register_user] User created: id={user.id}, email={email}, role={role}')
    return user


async def authenticate(session: AsyncSession, email: str, password: str) -> UserModel:
    user = await session.scalar(
        select(UserModel)
        .where(UserModel.email == email.strip().lower())
        .where(UserModel.status == UserStatusEnum.ACTIVE)
    )
    if not user or not verify_password(password, user.password_hash):
        logger.warning(f'[authenticate] Invalid credentials: email={email}')
        raise Unauthorized('Invalid email or password')
    return user
