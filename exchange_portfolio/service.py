"""
Exchange Portfolio - Portfolio Service.

============================================================
PURPOSE
============================================================
Wires the client, price service and valuator together and
exposes the operations front-ends consume:

- get_account_info()        signed account balances
- calculate_total_assets()  full PortfolioSnapshot
- fetch_holdings()          [{asset, type, total_amount}]
- fetch_token_prices(...)   [{token, price}]

============================================================
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .client import SignedRequestClient
from .config import PortfolioEngineConfig
from .errors import InvalidResponseError
from .pricing import PriceService
from .types import AssetBalance, Holding, PortfolioSnapshot, TokenPrice
from .valuation import PortfolioValuator


logger = logging.getLogger(__name__)


class PortfolioService:
    """Account valuation and price lookups for one exchange account."""

    def __init__(
        self,
        client: SignedRequestClient,
        price_service: Optional[PriceService] = None,
        valuator: Optional[PortfolioValuator] = None,
        config: Optional[PortfolioEngineConfig] = None,
    ):
        """
        Initialize portfolio service.

        Args:
            client: Exchange client
            price_service: Price service (default: built from config)
            valuator: Portfolio valuator (default: built from config)
            config: Master configuration
        """
        self._config = config or PortfolioEngineConfig()
        self._client = client
        if price_service is None:
            price_service = PriceService.from_config(client, self._config)
        self._prices = price_service
        self._valuator = valuator or PortfolioValuator(self._config.valuation)

    @classmethod
    def from_config(cls, config: PortfolioEngineConfig, **client_kwargs: Any) -> "PortfolioService":
        """Create the whole stack from the master configuration."""
        config.validate()
        client = SignedRequestClient.from_config(config, **client_kwargs)
        return cls(client, config=config)

    @property
    def client(self) -> SignedRequestClient:
        return self._client

    @property
    def prices(self) -> PriceService:
        return self._prices

    @property
    def reference_asset(self) -> str:
        return self._config.valuation.reference_asset

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> "PortfolioService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def get_account_info(self) -> List[AssetBalance]:
        """Spot balances of the account (signed request)."""
        endpoint = self._config.exchange.account_endpoint
        data = await self._client.execute(endpoint)

        if not isinstance(data, dict) or not isinstance(data.get("balances"), list):
            raise InvalidResponseError("Account payload has no balances array", endpoint=endpoint)

        try:
            return [AssetBalance.from_dict(entry) for entry in data["balances"]]
        except (KeyError, TypeError) as e:
            raise InvalidResponseError(f"Malformed balance entry: {e}", endpoint=endpoint) from e

    async def calculate_total_assets(self) -> PortfolioSnapshot:
        """Value every held asset in the reference currency."""
        logger.info("Fetching account information...")
        balances = await self.get_account_info()

        held_assets = [balance.asset for balance in balances if balance.total > 0]
        logger.info(f"Found {len(held_assets)} spot assets, fetching prices...")

        price_universe = await self._prices.get_prices_for_assets(held_assets)
        snapshot = self._valuator.valuate(balances, price_universe)

        logger.info(
            f"Portfolio value {snapshot.total_value} {snapshot.reference_asset} "
            f"across {len(snapshot.assets)} assets"
        )
        return snapshot

    # --------------------------------------------------------
    # FRONT-END SHAPES
    # --------------------------------------------------------

    async def fetch_holdings(self) -> List[Dict[str, Any]]:
        """Holdings derived from a fresh snapshot."""
        snapshot = await self.calculate_total_assets()
        return [Holding.from_valued_asset(asset).to_dict() for asset in snapshot.assets]

    async def fetch_token_prices(self, symbols: Iterable[str]) -> List[Dict[str, Any]]:
        """Prices for pair symbols, as returned by the exchange."""
        quotes = await self._prices.get_symbol_prices(symbols)
        return [TokenPrice.from_quote(quote).to_dict() for quote in quotes]
