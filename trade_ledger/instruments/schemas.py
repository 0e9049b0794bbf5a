from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InstrumentSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticker: str = Field(min_length=1, max_length=16)
    name: str = Field(min_length=1, max_length=100)
    reference_price: Optional[Decimal] = Field(default=None, gt=0)

    @field_validator('ticker')
    def normalize_ticker(cls, ticker):
        return ticker.strip().upper()
