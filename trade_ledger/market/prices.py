"""Market price collaborator.

``get_price`` resolves a symbol to a USD price in this order: a fresh cached
quote, the HTTP source (``MARKET_DATA_URL``), the last cached quote however
stale, the static price table, and finally the instrument's reference price.
"""
import time
from decimal import Decimal
from typing import Optional

import httpx

from trade_ledger.config import MARKET_DATA_URL, PRICE_CACHE_TTL
from trade_ledger.errors import ValidationError
from trade_ledger.money import round_price, to_decimal
from trade_ledger.logger import logger


DEFAULT_PRICES = {
    'BTC': Decimal('43250.00'),
    'ETH': Decimal('2285.50'),
    'BNB': Decimal('312.40'),
    'XRP': Decimal('0.62'),
    'SOL': Decimal('98.75'),
    'ADA': Decimal('0.58'),
    'DOGE': Decimal('0.082'),
    'DOT': Decimal('7.85'),
    'MATIC': Decimal('0.92'),
    'LTC': Decimal('72.30'),
    'AAPL': Decimal('178.52'),
    'GOOGL': Decimal('141.80'),
    'MSFT': Decimal('378.91'),
    'AMZN': Decimal('155.34'),
    'TSLA': Decimal('248.50'),
    'EURUSD': Decimal('1.0872'),
    'GBPUSD': Decimal('1.2698'),
    'SPX': Decimal('4500.00'),
    'NDX': Decimal('15000.00'),
    'DJI': Decimal('35000.00'),
    'FTSE': Decimal('7500.00'),
    'DAX': Decimal('16000.00'),
}


class MarketPriceService:
    def __init__(
        self,
        url: str = MARKET_DATA_URL,
        ttl: float = PRICE_CACHE_TTL,
        static_prices: Optional[dict] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = url
        self.ttl = ttl
        self.timeout = timeout
        self.static_prices = DEFAULT_PRICES if static_prices is None else static_prices
        self._transport = transport
        self._cache: dict[str, tuple[Decimal, float]] = {}

    @classmethod
    def fixed(cls, prices: dict) -> 'MarketPriceService':
        """A service that never goes to the network. Used by tests and demos."""
        return cls(url='', static_prices={symbol.upper(): to_decimal(price, 'price') for symbol, price in prices.items()})

    def set_price(self, symbol: str, price) -> None:
        self._cache[symbol.upper()] = (round_price(price), time.monotonic())

    async def _fetch(self, symbol: str) -> Optional[Decimal]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.url, params={'symbol': symbol})
            response.raise_for_status()
            data = response.json()

        price = data.get('price') if isinstance(data, dict) else None
        if price is None:
            return None
        price = round_price(price)
        return price if price > 0 else None

    async def get_price(self, symbol: str, reference_price: Optional[Decimal] = None) -> Decimal:
        symbol = symbol.upper()
        now = time.monotonic()

        cached = self._cache.get(symbol)
        if cached and now - cached[1] < self.ttl:
            return cached[0]

        if self.url:
            try:
                price = await self._fetch(symbol)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f'[get_price] Market data request failed for {symbol}: {e}')
                price = None
            if price is not None:
                self._cache[symbol] = (price, now)
                return price

        if cached:
            logger.info(f'[get_price] Using stale cached price for {symbol}: {cached[0]}')
            return cached[0]

        if symbol in self.static_prices:
            return self.static_prices[symbol]

        if reference_price is not None and reference_price > 0:
            logger.info(f'[get_price] Using reference price for {symbol}: {reference_price}')
            return reference_price

        raise ValidationError(f'No price available for {symbol}')
