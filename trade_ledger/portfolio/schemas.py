from decimal import Decimal

from pydantic import BaseModel

from trade_ledger.balance.schemas import BalanceSchema


class PortfolioSummarySchema(BaseModel):
    success: bool = True
    balances: list[BalanceSchema]
    open_positions: int
    pending_orders: int
    collateral_in_positions: Decimal
    unrealized_pnl: Decimal
    realized_pnl: Decimal
    closed_trades: int
    winning_trades: int
    equity: Decimal

class TickerPerformanceSchema(BaseModel):
    ticker: str
    closed_trades: int
    wins: int
    losses: int
    win_rate: Decimal
    realized_pnl: Decimal
    open_positions: int
    unrealized_pnl: Decimal

class PortfolioPerformanceSchema(BaseModel):
    success: bool = True
    performance: list[TickerPerformanceSchema]
