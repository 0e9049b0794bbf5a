from enum import Enum as PyEnum
from decimal import Decimal
from uuid import uuid4, UUID
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, ForeignKey, DateTime, Index, Numeric, Enum, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from trade_ledger.database import Base


class TransactionTypeEnum(PyEnum):
    DEPOSIT = 'DEPOSIT'
    WITHDRAWAL = 'WITHDRAWAL'
    TRADE_OPEN = 'TRADE_OPEN'
    TRADE_CLOSE = 'TRADE_CLOSE'
    ADMIN_ADJUSTMENT = 'ADMIN_ADJUSTMENT'

class TransactionStatusEnum(PyEnum):
    COMPLETED = 'COMPLETED'
    # collateral moved to locked; the user's total is unchanged
    HOLD = 'HOLD'

class TransactionModel(Base):
    __tablename__ = 'transactions'

    id: Mapped[UUID] = mapped_column(
        Uuid,
        default=uuid4,
        primary_key=True
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False
    )

    type: Mapped[TransactionTypeEnum] = mapped_column(
        Enum(TransactionTypeEnum),
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

    status: Mapped[TransactionStatusEnum] = mapped_column(
        Enum(TransactionStatusEnum),
        nullable=False,
        default=TransactionStatusEnum.COMPLETED
    )

    order_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey('orders.id', ondelete='SET NULL'),
        nullable=True
    )

    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default=''
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    __table_args__ = (
        Index('idx_transactions_user_currency_created', 'user_id', 'currency', 'created_at'),
    )
