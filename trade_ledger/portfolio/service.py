"""Portfolio views.

Read-only aggregates over balances and orders. Equity is the USD balance
(available plus locked) marked to market with the unrealized P&L of every
open position. Nothing here writes or commits.
"""
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from trade_ledger.balance import service as balance_service
from trade_ledger.balance.service import BalanceView
from trade_ledger.market.prices import MarketPriceService
from trade_ledger.money import USD, ZERO
from trade_ledger.orders import service as order_service
from trade_ledger.orders.models import OrderModel, StatusEnum
from trade_ledger.logger import logger


@dataclass(frozen=True)
class PortfolioSummary:
    balances: list[BalanceView]
    open_positions: int
    pending_orders: int
    collateral_in_positions: Decimal
    unrealized_pnl: Decimal
    realized_pnl: Decimal
    closed_trades: int
    winning_trades: int
    equity: Decimal


@dataclass
class TickerPerformance:
    ticker: str
    closed_trades: int = 0
    wins: int = 0
    losses: int = 0
    realized_pnl: Decimal = ZERO
    open_positions: int = 0
    unrealized_pnl: Decimal = ZERO

    @property
    def win_rate(self) -> Decimal:
        if not self.closed_trades:
            return ZERO
        return (Decimal(self.wins) / self.closed_trades * 100).quantize(Decimal('0.01'))


def _is_win(order: OrderModel) -> bool:
    return (order.realized_pnl or ZERO) > 0

async def _closed_orders(session: AsyncSession, user_id: int) -> list[OrderModel]:
    return await order_service.list_orders(session, user_id, status=StatusEnum.FILLED, limit=None)

async def summary(session: AsyncSession, user_id: int, prices: MarketPriceService) -> PortfolioSummary:
    balances = await balance_service.list_balances(session, user_id)
    positions = await order_service.list_open_positions(session, user_id, prices)
    pending = await order_service.list_orders(session, user_id, status=StatusEnum.PENDING, limit=None)
    closed = await _closed_orders(session, user_id)

    usd = next((view for view in balances if view.currency == USD), BalanceView(currency=USD))
    unrealized = sum((position.unrealized_pnl for position in positions), ZERO)

    result = PortfolioSummary(
        balances=balances,
        open_positions=len(positions),
        pending_orders=len(pending),
        collateral_in_positions=sum((position.collateral for position in positions), ZERO),
        unrealized_pnl=unrealized,
        realized_pnl=sum((order.realized_pnl or ZERO for order in closed), ZERO),
        closed_trades=len(closed),
        winning_trades=sum(1 for order in closed if _is_win(order)),
        equity=usd.total + unrealized
    )
    logger.debug(f'[portfolio_summary] user_id={user_id}, equity={result.equity}, open={result.open_positions}, closed={result.closed_trades}')
    return result

async def performance(session: AsyncSession, user_id: int, prices: MarketPriceService) -> list[TickerPerformance]:
    """Per-ticker results, closed trades and open positions together, by ticker."""
    rows: dict[str, TickerPerformance] = {}

    for order in await _closed_orders(session, user_id):
        row = rows.setdefault(order.ticker, TickerPerformance(order.ticker))
        pnl = order.realized_pnl or ZERO
        row.closed_trades += 1
        row.realized_pnl += pnl
        if pnl > 0:
            row.wins += 1
        elif pnl < 0:
            row.losses += 1

    for position in await order_service.list_open_positions(session, user_id, prices):
        row = rows.setdefault(position.ticker, TickerPerformance(position.ticker))
        row.open_positions += 1
        row.unrealized_pnl += position.unrealized_pnl

    return [rows[ticker] for ticker in sorted(rows)]
