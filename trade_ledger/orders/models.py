from enum import Enum as PyEnum
from decimal import Decimal
from uuid import uuid4, UUID
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Enum, String, ForeignKey, DateTime, Numeric, Index, Uuid, CheckConstraint

from trade_ledger.database import Base


class DirectionEnum(PyEnum):
    BUY = 'BUY'
    SELL = 'SELL'

class OrderTypeEnum(PyEnum):
    MARKET = 'MARKET'
    LIMIT = 'LIMIT'

class StatusEnum(PyEnum):
    # resting limit order, collateral locked, not yet filled
    PENDING = 'PENDING'
    OPEN = 'OPEN'
    FILLED = 'FILLED'
    CANCELLED = 'CANCELLED'

class OrderModel(Base):
    __tablename__ = 'orders'

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        nullable=False
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'),
        index=True,
        nullable=False
    )

    ticker: Mapped[str] = mapped_column(
        String(16),
        ForeignKey('instruments.ticker', ondelete='RESTRICT'),
        nullable=False
    )

    direction: Mapped[DirectionEnum] = mapped_column(
        Enum(DirectionEnum),
        nullable=False
    )

    order_type: Mapped[OrderTypeEnum] = mapped_column(
        Enum(OrderTypeEnum),
        nullable=False,
        default=OrderTypeEnum.MARKET
    )

    collateral: Mapped[Decimal] = mapped_column(
        Numeric(20, 2),
        nullable=False
    )

    entry_price: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False
    )

    take_profit: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(20, 8),
        nullable=True
    )

    stop_loss: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(20, 8),
        nullable=True
    )

    status: Mapped[StatusEnum] = mapped_column(
        Enum(StatusEnum),
        nullable=False,
        default=StatusEnum.OPEN
    )

    opened_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
        nullable=False
    )

    filled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    closed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    exit_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(20, 8),
        nullable=True
    )

    realized_pnl: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(20, 2),
        nullable=True
    )

    close_reason: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True
    )

    __table_args__ = (
        Index('idx_orders_user_status', 'user_id', 'status'),
        CheckConstraint('collateral > 0', name='ck_orders_collateral_positive'),
        CheckConstraint('entry_price > 0', name='ck_orders_entry_price_positive'),
    )
