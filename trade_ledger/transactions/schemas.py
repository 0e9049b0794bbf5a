from decimal import Decimal
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from trade_ledger.transactions.models import TransactionTypeEnum, TransactionStatusEnum


class TransactionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: TransactionTypeEnum
    currency: str
    amount: Decimal
    status: TransactionStatusEnum
    order_id: Optional[UUID]
    description: str
    created_at: datetime
