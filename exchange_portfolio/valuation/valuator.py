"""
Valuation - Portfolio Valuator.

============================================================
PURPOSE
============================================================
Values account balances in the reference currency against a
price universe.

PRICE RESOLUTION (first match wins):
1. Reference asset itself     -> price 1
2. Direct pair {asset}{ref}   -> pair price
3. Bridge {asset}{bridge} x {bridge}{ref}, bridges in order
4. Otherwise unresolved       -> omitted

Only assets worth more than the materiality threshold are
kept. The valuator holds no state between calls.

============================================================
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..config import ValuationConfig
from ..types import AssetBalance, AssetType, PortfolioSnapshot, PriceQuote, ValuedAsset


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PortfolioValuator:
    """Stateless portfolio valuation."""

    def __init__(
        self,
        config: Optional[ValuationConfig] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._config = config or ValuationConfig()
        self._clock = clock

    @property
    def reference_asset(self) -> str:
        return self._config.reference_asset

    def valuate(
        self,
        balances: Iterable[AssetBalance],
        price_universe: Iterable[PriceQuote],
    ) -> PortfolioSnapshot:
        """
        Value balances against the supplied quotes.

        Args:
            balances: Account balances (assumed unique per asset)
            price_universe: Available quotes

        Returns:
            Snapshot with assets sorted by value, descending
        """
        prices = {quote.symbol: quote.price for quote in price_universe}
        held = [balance for balance in balances if balance.total > 0]

        valued: List[ValuedAsset] = []
        unresolved: List[str] = []

        for balance in held:
            price = self.resolve_price(balance.asset, prices)
            if price is None:
                unresolved.append(balance.asset)
                continue

            value = balance.total * price
            if value <= self._config.materiality_threshold:
                continue

            valued.append(ValuedAsset(
                asset=balance.asset,
                free=balance.free,
                locked=balance.locked,
                total=balance.total,
                price=price,
                value=value,
                asset_type=AssetType.SPOT,
            ))

        if unresolved:
            logger.info(f"No price path for {len(unresolved)} assets: {', '.join(unresolved)}")

        valued.sort(key=lambda asset: asset.value, reverse=True)
        total_value = sum((asset.value for asset in valued), Decimal("0"))

        return PortfolioSnapshot(
            total_value=total_value,
            assets=tuple(valued),
            captured_at=self._clock(),
            reference_asset=self._config.reference_asset,
        )

    def resolve_price(self, asset: str, prices: Dict[str, Decimal]) -> Optional[Decimal]:
        """Reference-currency price of ``asset``, or None."""
        reference = self._config.reference_asset

        if asset == reference:
            return Decimal("1")

        direct = prices.get(f"{asset}{reference}")
        if direct is not None:
            return direct

        for bridge, bridge_price, bridge_reference_price in self._bridge_quotes(asset, prices):
            logger.debug(f"Pricing {asset} via {bridge}")
            return bridge_price * bridge_reference_price

        return None

    def _bridge_quotes(
        self,
        asset: str,
        prices: Dict[str, Decimal],
    ) -> Iterable[Tuple[str, Decimal, Decimal]]:
        """Yield usable bridge legs in configured order."""
        reference = self._config.reference_asset
        for bridge in self._config.bridge_assets:
            if bridge in (asset, reference):
                continue
            leg = prices.get(f"{asset}{bridge}")
            bridge_leg = prices.get(f"{bridge}{reference}")
            if leg is not None and bridge_leg is not None:
                yield bridge, leg, bridge_leg
