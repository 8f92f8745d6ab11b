"""
Pricing - Price Service.

============================================================
PURPOSE
============================================================
Fetches ticker prices from the public exchange endpoints,
cache first.

POLICIES:
1. Error recovery: a targeted batch that yields no quote at
   all falls back to the full snapshot.
2. Scaling: with no held assets, or at least
   ``full_snapshot_threshold`` of them, the full snapshot is
   pulled instead of one request per symbol.

The two policies are independent; their triggers differ.

============================================================
"""

import asyncio
import logging
from typing import Any, Iterable, List, Optional

import aiohttp

from ..config import ExchangeConfig, PortfolioEngineConfig, PricingConfig
from ..errors import InvalidResponseError, PartialFetchFailure, PortfolioEngineError
from ..types import PricePayload, PriceQuote
from .cache import ALL_PRICES_KEY, PriceCache, symbols_fingerprint


logger = logging.getLogger(__name__)


class PriceService:
    """
    Ticker price lookups backed by the price cache.

    Price endpoints are public, so requests go out unsigned but still
    through the client's retry policy.
    """

    def __init__(
        self,
        client,
        cache: Optional[PriceCache] = None,
        pricing_config: Optional[PricingConfig] = None,
        exchange_config: Optional[ExchangeConfig] = None,
        reference_asset: str = "USDT",
    ):
        """
        Initialize price service.

        Args:
            client: SignedRequestClient (or anything with its ``execute``)
            cache: Price cache (default: 1s TTL)
            pricing_config: Lookup policy
            exchange_config: Endpoint configuration
            reference_asset: Quote asset used for held-asset pairs
        """
        self._client = client
        self._cache = cache if cache is not None else PriceCache()
        self._pricing = pricing_config or PricingConfig()
        self._exchange = exchange_config or ExchangeConfig()
        self._reference_asset = reference_asset

    @classmethod
    def from_config(cls, client, config: PortfolioEngineConfig) -> "PriceService":
        """Create a price service from the master configuration."""
        return cls(
            client,
            cache=PriceCache(ttl_seconds=config.cache.ttl_seconds),
            pricing_config=config.pricing,
            exchange_config=config.exchange,
            reference_asset=config.valuation.reference_asset,
        )

    @property
    def cache(self) -> PriceCache:
        return self._cache

    # --------------------------------------------------------
    # FULL SNAPSHOT
    # --------------------------------------------------------

    async def get_all_prices(self) -> List[PriceQuote]:
        """Every ticker on the exchange."""
        cached = self._cache.get(ALL_PRICES_KEY)
        if cached is not None:
            logger.debug("Using cached price data")
            return list(cached.quotes)

        try:
            data = await self._client.execute(
                self._exchange.ticker_price_endpoint,
                signed=False,
            )
        except PortfolioEngineError as e:
            logger.error(f"Error fetching all prices: {e}")
            raise

        quotes = self._parse_snapshot(data)
        self._cache.put(ALL_PRICES_KEY, PricePayload.full_snapshot(quotes))
        logger.info(f"Fetched {len(quotes)} ticker prices")
        return quotes

    def _parse_snapshot(self, data: Any) -> List[PriceQuote]:
        """Parse the ticker array, one quote per symbol."""
        if not isinstance(data, list):
            raise InvalidResponseError(
                f"Expected a ticker list, got {type(data).__name__}",
                endpoint=self._exchange.ticker_price_endpoint,
            )

        quotes = {}
        for entry in data:
            try:
                quote = PriceQuote.from_dict(entry)
            except ValueError as e:
                logger.debug(f"Skipping ticker entry: {e}")
                continue
            quotes[quote.symbol] = quote

        return list(quotes.values())

    # --------------------------------------------------------
    # TARGETED LOOKUPS
    # --------------------------------------------------------

    async def get_symbol_prices(self, symbols: Iterable[str]) -> List[PriceQuote]:
        """
        Quotes for specific pair symbols.

        Symbols that fail individually are logged and skipped. When
        none succeed, the full snapshot is returned instead.
        """
        symbols = list(dict.fromkeys(symbols))
        if not symbols:
            return []

        key = symbols_fingerprint(symbols)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Using cached prices for {key}")
            return list(cached.quotes)

        quotes = await self._fetch_batch(symbols)

        if quotes:
            self._cache.put(key, PricePayload.targeted(quotes))
            return quotes

        logger.warning(
            f"No prices resolved for {len(symbols)} symbols, "
            "falling back to full snapshot"
        )
        return await self.get_all_prices()

    async def get_prices_for_assets(self, assets: Iterable[str]) -> List[PriceQuote]:
        """
        Price universe for a set of held assets.

        Each asset maps to its ``{asset}{reference}`` pair; the
        reference asset itself needs no quote.
        """
        assets = list(assets)

        if not assets or len(assets) >= self._pricing.full_snapshot_threshold:
            logger.info(f"Using full price snapshot for {len(assets)} assets")
            return await self.get_all_prices()

        symbols = [
            f"{asset}{self._reference_asset}"
            for asset in assets
            if asset != self._reference_asset
        ]
        return await self.get_symbol_prices(symbols)

    async def _fetch_batch(self, symbols: List[str]) -> List[PriceQuote]:
        """Fetch each symbol, keeping input order and dropping failures."""
        concurrency = self._pricing.symbol_fetch_concurrency

        if concurrency <= 1:
            results = []
            for symbol in symbols:
                results.append(await self._fetch_one(symbol))
        else:
            semaphore = asyncio.Semaphore(concurrency)

            async def bounded(symbol: str) -> Optional[PriceQuote]:
                async with semaphore:
                    return await self._fetch_one(symbol)

            results = await asyncio.gather(*(bounded(s) for s in symbols))

        return [quote for quote in results if quote is not None]

    async def _fetch_one(self, symbol: str) -> Optional[PriceQuote]:
        try:
            return await self._fetch_symbol(symbol)
        except PartialFetchFailure as failure:
            logger.warning(str(failure))
            return None

    async def _fetch_symbol(self, symbol: str) -> PriceQuote:
        try:
            data = await self._client.execute(
                self._exchange.ticker_price_endpoint,
                {"symbol": symbol},
                signed=False,
            )
            return PriceQuote.from_dict(data)
        except (PortfolioEngineError, aiohttp.ClientError, ValueError) as e:
            raise PartialFetchFailure(symbol, e) from e
