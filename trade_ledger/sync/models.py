from enum import Enum as PyEnum
from uuid import UUID
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Integer, ForeignKey, DateTime, Enum, Index, Uuid, Text
from sqlalchemy.orm import Mapped, mapped_column

from trade_ledger.database import Base


class LinkSourceEnum(PyEnum):
    DERIVED = 'derived'
    EMAIL = 'email'

class SyncJobKindEnum(PyEnum):
    USER = 'USER'
    BALANCE = 'BALANCE'

class SyncJobStatusEnum(PyEnum):
    PENDING = 'PENDING'
    DONE = 'DONE'
    FAILED = 'FAILED'

class IdentityLinkModel(Base):
    __tablename__ = 'identity_links'

    primary_user_id: Mapped[int] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'),
        primary_key=True
    )

    mirror_user_id: Mapped[UUID] = mapped_column(
        Uuid,
        nullable=False,
        unique=True
    )

    source: Mapped[LinkSourceEnum] = mapped_column(
        Enum(LinkSourceEnum),
        nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

class SyncJobModel(Base):
    __tablename__ = 'sync_jobs'

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True
    )

    kind: Mapped[SyncJobKindEnum] = mapped_column(
        Enum(SyncJobKindEnum),
        nullable=False
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False
    )

    currency: Mapped[Optional[str]] = mapped_column(
        String(16),
        nullable=True
    )

    status: Mapped[SyncJobStatusEnum] = mapped_column(
        Enum(SyncJobStatusEnum),
        nullable=False,
        default=SyncJobStatusEnum.PENDING
    )

    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0
    )

    last_error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True
    )

    next_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    __table_args__ = (
        Index('idx_sync_jobs_status_next_attempt', 'status', 'next_attempt_at'),
        Index('idx_sync_jobs_user_kind', 'user_id', 'kind', 'currency'),
    )

class SyncLeaseModel(Base):
    """One row per (user, currency) balance sync in flight."""
    __tablename__ = 'sync_leases'

    user_id: Mapped[int] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'),
        primary_key=True
    )

    currency: Mapped[str] = mapped_column(
        String(16),
        primary_key=True
    )

    holder: Mapped[str] = mapped_column(
        String(64),
        nullable=False
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False
    )
