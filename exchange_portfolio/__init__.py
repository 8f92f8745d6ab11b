"""
Exchange Portfolio.

============================================================
PURPOSE
============================================================
Values a Binance spot account in a reference currency (USDT).

FLOW:
1. SignedRequestClient fetches balances (HMAC-SHA256 signed)
2. PriceService picks a price strategy for the held assets
   (targeted lookups below 50 assets, full snapshot otherwise)
3. PortfolioValuator prices each asset directly or via a bridge
   and drops immaterial positions

All exchange traffic goes through one retry policy and every
price lookup is memoized for one second.

============================================================
"""

from .config import (
    ExchangeCredentials,
    RetryConfig,
    TimeoutConfig,
    CacheConfig,
    PricingConfig,
    ValuationConfig,
    ExchangeConfig,
    PortfolioEngineConfig,
)
from .errors import (
    ErrorCategory,
    FailureClass,
    PortfolioEngineError,
    ConfigurationError,
    TransientFailure,
    RetryExhaustedError,
    RateLimitExhausted,
    NetworkExhausted,
    NoResponseExhausted,
    ExchangeRejected,
    InvalidResponseError,
    PartialFetchFailure,
)
from .types import (
    SignedRequest,
    AssetBalance,
    PriceQuote,
    PayloadKind,
    PricePayload,
    CacheEntry,
    AssetType,
    ValuedAsset,
    PortfolioSnapshot,
    Holding,
    TokenPrice,
)
from .client import SignedRequestClient, RetryPolicy
from .pricing import PriceCache, PriceService
from .valuation import PortfolioValuator
from .service import PortfolioService
from .symbols import to_pair_symbols, to_token


__version__ = "1.0.0"

__all__ = [
    # Config
    "ExchangeCredentials",
    "RetryConfig",
    "TimeoutConfig",
    "CacheConfig",
    "PricingConfig",
    "ValuationConfig",
    "ExchangeConfig",
    "PortfolioEngineConfig",
    # Errors
    "ErrorCategory",
    "FailureClass",
    "PortfolioEngineError",
    "ConfigurationError",
    "TransientFailure",
    "RetryExhaustedError",
    "RateLimitExhausted",
    "NetworkExhausted",
    "NoResponseExhausted",
    "ExchangeRejected",
    "InvalidResponseError",
    "PartialFetchFailure",
    # Types
    "SignedRequest",
    "AssetBalance",
    "PriceQuote",
    "PayloadKind",
    "PricePayload",
    "CacheEntry",
    "AssetType",
    "ValuedAsset",
    "PortfolioSnapshot",
    "Holding",
    "TokenPrice",
    # Components
    "SignedRequestClient",
    "RetryPolicy",
    "PriceCache",
    "PriceService",
    "PortfolioValuator",
    "PortfolioService",
    # Symbols
    "to_pair_symbols",
    "to_token",
]
