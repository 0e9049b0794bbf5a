from decimal import Decimal
from uuid import uuid4, UUID
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Numeric, JSON, Index, Uuid, CheckConstraint, ForeignKey
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class MirrorBase(DeclarativeBase):
    pass


class MirrorUserModel(MirrorBase):
    __tablename__ = 'mirror_users'

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4
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

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

class MirrorWalletModel(MirrorBase):
    __tablename__ = 'mirror_wallets'

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4
    )

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey('mirror_users.id', ondelete='CASCADE'),
        nullable=False
    )

    currency: Mapped[str] = mapped_column(
        String(16),
        nullable=False
    )

    available: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
        default=Decimal('0')
    )

    locked: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
        default=Decimal('0')
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    __table_args__ = (
        Index('idx_mirror_wallets_user_currency', 'user_id', 'currency', unique=True),
        CheckConstraint('available >= 0', name='ck_mirror_wallets_available_non_negative'),
        CheckConstraint('locked >= 0', name='ck_mirror_wallets_locked_non_negative'),
    )

class MirrorTransactionModel(MirrorBase):
    __tablename__ = 'mirror_transactions'

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4
    )

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey('mirror_users.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    kind: Mapped[str] = mapped_column(
        String(32),
        nullable=False
    )

    currency: Mapped[str] = mapped_column(
        String(16),
        nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False
    )

    idempotency_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True
    )

    metadata_: Mapped[Optional[dict]] = mapped_column(
        'metadata',
        JSON,
        nullable=True
    )

    available_after: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False
    )

    locked_after: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
