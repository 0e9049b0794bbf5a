from enum import Enum as PyEnum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, String, Enum, ForeignKey, DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from trade_ledger.database import Base


class RoleEnum(PyEnum):
    USER = 'USER'
    ADMIN = 'ADMIN'

class UserStatusEnum(PyEnum):
    ACTIVE = 'ACTIVE'
    INACTIVE = 'INACTIVE'

class UserModel(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, 'sqlite'),
        primary_key=True,
        autoincrement=True
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True
    )

    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=''
    )

    last_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=''
    )

    role: Mapped[RoleEnum] = mapped_column(
        Enum(RoleEnum),
        nullable=False,
        default=RoleEnum.USER
    )

    status: Mapped[UserStatusEnum] = mapped_column(
        Enum(UserStatusEnum),
        nullable=False,
        default=UserStatusEnum.ACTIVE
    )

    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False
    )

    two_factor_secret: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

class SessionModel(Base):
    __tablename__ = 'user_sessions'

    token: Mapped[str] = mapped_column(
        String(64),
        primary_key=True
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'),
        index=True,
        nullable=False
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
