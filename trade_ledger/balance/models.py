from decimal import Decimal

from sqlalchemy import String, ForeignKey, Numeric, Integer, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from trade_ledger.database import Base


class BalanceModel(Base):
    __tablename__ = 'balances'

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'),
        index=True,
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

    # bumped by every balance UPDATE
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0
    )

    __table_args__ = (
        Index('idx_balances_user_currency', 'user_id', 'currency', unique=True),
        CheckConstraint('available >= 0', name='ck_balances_available_non_negative'),
        CheckConstraint('locked >= 0', name='ck_balances_locked_non_negative'),
    )
