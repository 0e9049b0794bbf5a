from decimal import Decimal
from typing import Optional

from sqlalchemy import String, ForeignKey, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from trade_ledger.database import Base


class InstrumentModel(Base):
    __tablename__ = 'instruments'

    ticker: Mapped[str] = mapped_column(
        String(16),
        primary_key=True
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False
    )

    reference_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(20, 8),
        nullable=True
    )

    created_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey('users.id', ondelete='SET NULL'),
        nullable=True
    )
