from decimal import Decimal
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from trade_ledger.orders.models import DirectionEnum, OrderTypeEnum, StatusEnum


class OpenOrderBodySchema(BaseModel):
    symbol: str = Field(min_length=1, max_length=16)
    side: Literal['buy', 'sell', 'BUY', 'SELL']
    collateral: Decimal = Field(gt=0)
    order_type: Literal['market', 'limit', 'MARKET', 'LIMIT'] = 'market'
    limit_price: Optional[Decimal] = Field(default=None, gt=0)
    take_profit: Optional[Decimal] = Field(default=None, gt=0)
    stop_loss: Optional[Decimal] = Field(default=None, gt=0)

    @field_validator('symbol')
    def normalize_symbol(cls, symbol):
        return symbol.strip().upper()

class CreateOrderResponseSchema(BaseModel):
    success: Literal[True] = Field(default=True)
    order_id: UUID
    entry_price: Decimal
    status: StatusEnum

class CloseOrderResponseSchema(BaseModel):
    success: Literal[True] = Field(default=True)
    order_id: UUID
    exit_price: Decimal
    pnl: Decimal
    reason: str
    status: StatusEnum

class CancelOrderResponseSchema(BaseModel):
    success: Literal[True] = Field(default=True)
    order_id: UUID
    status: StatusEnum

class OrderSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticker: str
    direction: DirectionEnum
    order_type: OrderTypeEnum
    collateral: Decimal
    entry_price: Decimal
    take_profit: Optional[Decimal]
    stop_loss: Optional[Decimal]
    status: StatusEnum
    opened_at: datetime
    filled_at: Optional[datetime]
    closed_at: Optional[datetime]
    exit_price: Optional[Decimal]
    realized_pnl: Optional[Decimal]
    close_reason: Optional[str]

class PositionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: UUID
    ticker: str
    direction: DirectionEnum
    collateral: Decimal
    entry_price: Decimal
    current_price: Decimal
    unrealized_pnl: Decimal
    pnl_percent: Decimal
    take_profit: Optional[Decimal]
    stop_loss: Optional[Decimal]
    opened_at: datetime

class TriggerResultSchema(BaseModel):
    success: Literal[True] = Field(default=True)
    closed: list[CloseOrderResponseSchema]
