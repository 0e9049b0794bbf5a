from decimal import Decimal

import httpx
import pytest

from trade_ledger.errors import ValidationError
from trade_ledger.market.prices import DEFAULT_PRICES, MarketPriceService


class TestMarketPriceService:
    async def test_fixed_prices(self):
        prices = MarketPriceService.fixed({'btc': 100})

        assert await prices.get_price('BTC') == Decimal('100')
        with pytest.raises(ValidationError):
            await prices.get_price('ETH')

    async def test_set_price_overrides_table(self):
        prices = MarketPriceService.fixed({'BTC': 100})
        prices.set_price('btc', '101.5')

        assert await prices.get_price('BTC') == Decimal('101.5')

    async def test_reference_price_is_last_resort(self):
        prices = MarketPriceService(url='', static_prices={})

        assert await prices.get_price('XYZ', Decimal('12.5')) == Decimal('12.5')

    async def test_static_table_default(self):
        prices = MarketPriceService(url='')

        assert await prices.get_price('ETH') == DEFAULT_PRICES['ETH'] == Decimal('2285.50')

    async def test_http_source_is_cached(self):
        calls = []

        def handler(request):
            calls.append(request.url.params['symbol'])
            return httpx.Response(200, json={'symbol': 'BTC', 'price': 50000.123})

        prices = MarketPriceService(url='https://prices.tradeledger.io/quote', ttl=60, transport=httpx.MockTransport(handler))

        assert await prices.get_price('btc') == Decimal('50000.123')
        assert await prices.get_price('BTC') == Decimal('50000.123')
        assert calls == ['BTC']

    async def test_http_failure_falls_back(self):
        responses = iter([
            httpx.Response(200, json={'price': '64000'}),
            httpx.Response(502, json={'error': 'bad gateway'}),
        ])
        prices = MarketPriceService(url='https://prices.tradeledger.io/quote', ttl=0, transport=httpx.MockTransport(lambda request: next(responses)))

        assert await prices.get_price('BTC') == Decimal('64000')
        # stale cache wins over the static table
        assert await prices.get_price('BTC') == Decimal('64000')

    async def test_unreachable_source_uses_static_table(self):
        def handler(request):
            raise httpx.ConnectError('down', request=request)

        prices = MarketPriceService(url='https://prices.tradeledger.io/quote', transport=httpx.MockTransport(handler))

        assert await prices.get_price('BTC') == DEFAULT_PRICES['BTC']
