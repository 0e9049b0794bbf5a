from fastapi import APIRouter, Depends

from trade_ledger.database import SessionDep
from trade_ledger.balance.schemas import BalanceSchema
from trade_ledger.market.prices import MarketPriceService
from trade_ledger.orders.router import get_prices
from trade_ledger.portfolio import service as portfolio_service
from trade_ledger.portfolio.schemas import PortfolioPerformanceSchema, PortfolioSummarySchema, TickerPerformanceSchema
from trade_ledger.users.auth import AuthenticatedUser
from trade_ledger.users.dependencies import get_current_user
from trade_ledger.logger import logger


portfolio_router = APIRouter()

@portfolio_router.get('/api/v1/portfolio/summary', response_model=PortfolioSummarySchema, tags=['portfolio'])
async def get_summary(
    session: SessionDep,
    prices: MarketPriceService = Depends(get_prices),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    summary = await portfolio_service.summary(session, current_user.id, prices)
    logger.info(f'[GET /api/v1/portfolio/summary] user_id={current_user.id}, equity={summary.equity}, open_positions={summary.open_positions}')
    return PortfolioSummarySchema(
        balances=[BalanceSchema(currency=view.currency, available=view.available, locked=view.locked) for view in summary.balances],
        open_positions=summary.open_positions,
        pending_orders=summary.pending_orders,
        collateral_in_positions=summary.collateral_in_positions,
        unrealized_pnl=summary.unrealized_pnl,
        realized_pnl=summary.realized_pnl,
        closed_trades=summary.closed_trades,
        winning_trades=summary.winning_trades,
        equity=summary.equity
    )

@portfolio_router.get('/api/v1/portfolio/performance', response_model=PortfolioPerformanceSchema, tags=['portfolio'])
async def get_performance(
    session: SessionDep,
    prices: MarketPriceService = Depends(get_prices),
    current_user: AuthenticatedUser = Depends(get_current_user)
):
    rows = await portfolio_service.performance(session, current_user.id, prices)
    logger.info(f'[GET /api/v1/portfolio/performance] user_id={current_user.id}, tickers={[row.ticker for row in rows]}')
    return PortfolioPerformanceSchema(performance=[
        TickerPerformanceSchema(
            ticker=row.ticker,
            closed_trades=row.closed_trades,
            wins=row.wins,
            losses=row.losses,
            win_rate=row.win_rate,
            realized_pnl=row.realized_pnl,
            open_positions=row.open_positions,
            unrealized_pnl=row.unrealized_pnl
        )
        for row in rows
    ])
