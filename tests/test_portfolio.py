from decimal import Decimal

import pytest

from trade_ledger.orders import service as order_service
from trade_ledger.portfolio import service as portfolio_service


@pytest.fixture
async def traded_user(session, funded_user, prices):
    won = await order_service.open_order(session, funded_user.id, prices, 'BTC', 'buy', 400)
    await order_service.close_order(session, funded_user.id, won.id, 110)
    lost = await order_service.open_order(session, funded_user.id, prices, 'BTC', 'sell', 100)
    await order_service.close_order(session, funded_user.id, lost.id, 120)

    await order_service.open_order(session, funded_user.id, prices, 'ETH', 'buy', 200)
    await order_service.open_order(session, funded_user.id, prices, 'BTC', 'buy', 100, order_type='limit', limit_price='50')
    prices.set_price('ETH', 2100)
    return funded_user


class TestSummary:
    async def test_empty_account(self, session, user, prices):
        summary = await portfolio_service.summary(session, user.id, prices)

        assert summary.balances == []
        assert (summary.open_positions, summary.pending_orders, summary.closed_trades) == (0, 0, 0)
        assert summary.equity == Decimal('0')

    async def test_equity_marks_open_positions_to_market(self, session, traded_user, prices):
        summary = await portfolio_service.summary(session, traded_user.id, prices)

        [usd] = summary.balances
        assert (usd.available, usd.locked) == (Decimal('720'), Decimal('300'))
        assert (summary.open_positions, summary.pending_orders) == (1, 1)
        assert summary.collateral_in_positions == Decimal('200')
        assert summary.unrealized_pnl == Decimal('10.00')
        assert summary.realized_pnl == Decimal('20.00')
        assert (summary.closed_trades, summary.winning_trades) == (2, 1)
        assert summary.equity == Decimal('1030.00')

    async def test_reading_changes_nothing(self, session, traded_user, prices):
        before = await order_service.list_orders(session, traded_user.id, limit=None)

        await portfolio_service.summary(session, traded_user.id, prices)
        await portfolio_service.performance(session, traded_user.id, prices)

        after = await order_service.list_orders(session, traded_user.id, limit=None)
        assert [(order.id, order.status) for order in after] == [(order.id, order.status) for order in before]


class TestPerformance:
    async def test_groups_by_ticker(self, session, traded_user, prices):
        rows = await portfolio_service.performance(session, traded_user.id, prices)

        btc, eth = rows
        assert (btc.ticker, btc.closed_trades, btc.wins, btc.losses) == ('BTC', 2, 1, 1)
        assert btc.realized_pnl == Decimal('20.00')
        assert btc.win_rate == Decimal('50.00')
        assert btc.open_positions == 0

        assert (eth.ticker, eth.closed_trades, eth.open_positions) == ('ETH', 0, 1)
        assert eth.unrealized_pnl == Decimal('10.00')
        assert eth.win_rate == Decimal('0')

    async def test_pending_limits_are_left_out(self, session, funded_user, prices):
        await order_service.open_order(session, funded_user.id, prices, 'BTC', 'buy', 100, order_type='limit', limit_price='50')

        assert await portfolio_service.performance(session, funded_user.id, prices) == []
