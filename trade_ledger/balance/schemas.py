from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class BalanceSchema(BaseModel):
    currency: str
    available: Decimal
    locked: Decimal

class BalanceOperationSchema(BaseModel):
    user_id: int
    currency: str = Field(default='USD', min_length=1, max_length=16)
    amount: Decimal = Field(gt=0)
    idempotency_key: Optional[str] = Field(default=None, max_length=255)
    description: str = Field(default='', max_length=255)

    @field_validator('currency')
    def normalize_currency(cls, currency):
        return currency.strip().upper()

class BalanceOperationResponseSchema(BaseModel):
    success: bool = True
    duplicate: bool = False
    balance: BalanceSchema
