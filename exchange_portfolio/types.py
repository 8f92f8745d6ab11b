"""
Exchange Portfolio - Types.

============================================================
PURPOSE
============================================================
All type definitions shared by the client, price service and
portfolio valuator.

CRITICAL PRINCIPLE:
    "A snapshot is built fresh on every valuation and never mutated."

============================================================
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple


# ============================================================
# PARSING HELPERS
# ============================================================

def to_decimal(value: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """Parse an exchange numeric string, falling back to ``default``."""
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


# ============================================================
# SIGNED REQUEST
# ============================================================

@dataclass(frozen=True)
class SignedRequest:
    """
    A request authenticated with a keyed signature.

    ``query`` is the exact string that was signed (parameters followed
    by the timestamp); the signature is appended after it.
    """

    method: str
    endpoint: str
    query: str
    timestamp: int
    signature: str

    @property
    def payload(self) -> str:
        """Signed query string sent to the exchange."""
        return f"{self.query}&signature={self.signature}"


# ============================================================
# BALANCES AND QUOTES
# ============================================================

@dataclass(frozen=True)
class AssetBalance:
    """Account balance for an asset."""

    asset: str
    """Asset symbol (e.g., BTC)."""

    free: Decimal = Decimal("0")
    """Free (available) balance."""

    locked: Decimal = Decimal("0")
    """Locked (in orders) balance."""

    @property
    def total(self) -> Decimal:
        """Get total balance."""
        return self.free + self.locked

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssetBalance":
        """Parse one entry of the account ``balances`` array."""
        return cls(
            asset=data["asset"],
            free=to_decimal(data.get("free")),
            locked=to_decimal(data.get("locked")),
        )


@dataclass(frozen=True)
class PriceQuote:
    """Latest price of a trading pair."""

    symbol: str
    """Pair symbol, base followed by quote (e.g., BTCUSDT)."""

    price: Decimal
    """Last price in quote units."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceQuote":
        """
        Parse a ticker price entry.

        Raises:
            ValueError: If the entry has no symbol or no parsable price
        """
        if not isinstance(data, dict) or not data.get("symbol"):
            raise ValueError(f"Malformed ticker entry: {data!r}")
        price = to_decimal(data.get("price"), default=None)
        if price is None:
            raise ValueError(f"Unparsable price for {data['symbol']}: {data.get('price')!r}")
        return cls(symbol=data["symbol"], price=price)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"symbol": self.symbol, "price": str(self.price)}


# ============================================================
# CACHE PAYLOADS
# ============================================================

class PayloadKind(Enum):
    """Shape of a cached price payload."""

    FULL_SNAPSHOT = "FULL_SNAPSHOT"
    """Every ticker on the exchange."""

    TARGETED = "TARGETED"
    """Quotes for a requested symbol subset."""


@dataclass(frozen=True)
class PricePayload:
    """Tagged price payload stored in the price cache."""

    kind: PayloadKind
    quotes: Tuple[PriceQuote, ...]

    @classmethod
    def full_snapshot(cls, quotes: List[PriceQuote]) -> "PricePayload":
        return cls(kind=PayloadKind.FULL_SNAPSHOT, quotes=tuple(quotes))

    @classmethod
    def targeted(cls, quotes: List[PriceQuote]) -> "PricePayload":
        return cls(kind=PayloadKind.TARGETED, quotes=tuple(quotes))


@dataclass(frozen=True)
class CacheEntry:
    """Cached payload and the instant it was captured (clock seconds)."""

    payload: PricePayload
    captured_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        """Valid for exactly one TTL window from capture."""
        return (now - self.captured_at) < ttl_seconds


# ============================================================
# VALUATION
# ============================================================

class AssetType(Enum):
    """Classification of a valued holding."""

    SPOT = "spot"


@dataclass(frozen=True)
class ValuedAsset:
    """A holding valued in the reference currency."""

    asset: str
    free: Decimal
    locked: Decimal
    total: Decimal
    price: Optional[Decimal]
    """Reference-currency price; None when no quote path exists."""

    value: Decimal
    asset_type: AssetType = AssetType.SPOT

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "asset": self.asset,
            "free": str(self.free),
            "locked": str(self.locked),
            "total": str(self.total),
            "price": str(self.price) if self.price is not None else None,
            "value": str(self.value),
            "type": self.asset_type.value,
        }


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Account valuation at one instant."""

    total_value: Decimal
    assets: Tuple[ValuedAsset, ...]
    """Valued assets, descending by value."""

    captured_at: datetime
    reference_asset: str = "USDT"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_value": str(self.total_value),
            "reference_asset": self.reference_asset,
            "assets": [a.to_dict() for a in self.assets],
            "captured_at": self.captured_at.isoformat(),
        }


# ============================================================
# OUTBOUND SHAPES
# ============================================================

@dataclass(frozen=True)
class Holding:
    """One held asset as exposed to front-ends."""

    asset: str
    asset_type: AssetType
    total_amount: Decimal

    @classmethod
    def from_valued_asset(cls, valued: ValuedAsset) -> "Holding":
        return cls(
            asset=valued.asset,
            asset_type=valued.asset_type,
            total_amount=valued.total,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset,
            "type": self.asset_type.value,
            "total_amount": self.total_amount,
        }


@dataclass(frozen=True)
class TokenPrice:
    """One price as exposed to front-ends."""

    token: str
    price: Decimal

    @classmethod
    def from_quote(cls, quote: PriceQuote) -> "TokenPrice":
        return cls(token=quote.symbol, price=quote.price)

    def to_dict(self) -> Dict[str, Any]:
        return {"token": self.token, "price": self.price}
