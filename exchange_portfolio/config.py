"""
Exchange Portfolio - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the exchange client, price service and
portfolio valuator.

CRITICAL CONSTRAINTS:
- Credentials are read once, at construction
- Bounded retries only
- No ambient environment reads inside the client

============================================================
"""

import os
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigurationError, FailureClass


logger = logging.getLogger(__name__)


# ============================================================
# CREDENTIALS
# ============================================================

@dataclass(frozen=True)
class ExchangeCredentials:
    """
    Exchange API credentials.

    The key travels in the authentication header; the secret is only
    used to derive signatures and is never transmitted.
    """

    api_key: str = ""
    api_secret: str = ""

    @property
    def is_complete(self) -> bool:
        """Whether both credentials are present."""
        return bool(self.api_key) and bool(self.api_secret)

    def __repr__(self) -> str:
        key = f"{self.api_key[:4]}...***" if self.api_key else "<missing>"
        secret = "***" if self.api_secret else "<missing>"
        return f"ExchangeCredentials(api_key={key!r}, api_secret={secret!r})"


# ============================================================
# RETRY CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry configuration for exchange requests.

    SAFETY: Limited attempts, linear backoff per failure class.
    """

    max_attempts: int = 3
    """Maximum number of attempts per request (first try included)."""

    rate_limit_backoff_seconds: float = 2.0
    """Wait ``attempt x this`` after an HTTP 429."""

    network_backoff_seconds: float = 2.0
    """Wait ``attempt x this`` after a connection failure."""

    no_response_backoff_seconds: float = 3.0
    """Wait ``attempt x this`` when the request got no reply."""

    def backoff_for(self, failure_class: FailureClass) -> float:
        """Backoff multiplier for a failure class."""
        return {
            FailureClass.RATE_LIMIT: self.rate_limit_backoff_seconds,
            FailureClass.NETWORK: self.network_backoff_seconds,
            FailureClass.NO_RESPONSE: self.no_response_backoff_seconds,
        }[failure_class]


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    Timeout configuration.
    """

    connection_timeout_seconds: float = 10.0
    """Connection timeout."""

    total_timeout_seconds: float = 30.0
    """Total timeout for one request attempt."""


# ============================================================
# CACHE CONFIGURATION
# ============================================================

@dataclass
class CacheConfig:
    """
    Price cache configuration.
    """

    ttl_seconds: float = 1.0
    """Lifetime of a cached price payload."""


# ============================================================
# PRICING CONFIGURATION
# ============================================================

@dataclass
class PricingConfig:
    """
    Price lookup policy.
    """

    full_snapshot_threshold: int = 50
    """Held-asset count at which the full ticker snapshot is always used."""

    symbol_fetch_concurrency: int = 1
    """In-flight per-symbol lookups. 1 means strictly sequential."""


# ============================================================
# VALUATION CONFIGURATION
# ============================================================

@dataclass
class ValuationConfig:
    """
    Portfolio valuation configuration.
    """

    reference_asset: str = "USDT"
    """Asset every holding is valued in."""

    bridge_assets: Tuple[str, ...] = ("BTC",)
    """Bridge assets tried in order when no direct pair exists."""

    materiality_threshold: Decimal = Decimal("0.01")
    """Assets worth this much or less are omitted."""


# ============================================================
# EXCHANGE CONFIGURATION
# ============================================================

@dataclass
class ExchangeConfig:
    """
    Exchange-specific configuration.
    """

    rest_url: str = "https://api.binance.com"
    """REST API base URL."""

    account_endpoint: str = "/api/v3/account"
    """Signed account information endpoint."""

    ticker_price_endpoint: str = "/api/v3/ticker/price"
    """Public ticker price endpoint (all symbols or ``?symbol=``)."""

    server_time_endpoint: str = "/api/v3/time"
    """Public server time endpoint."""

    # Credentials (loaded from env)
    api_key_env: str = "BINANCE_API_KEY"
    """Environment variable for API key."""

    api_secret_env: str = "BINANCE_SECRET_KEY"
    """Environment variable for API secret."""

    recv_window_ms: Optional[int] = None
    """Optional recvWindow added to signed requests."""


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class PortfolioEngineConfig:
    """
    Master configuration for the exchange portfolio engine.
    """

    credentials: ExchangeCredentials = field(default_factory=ExchangeCredentials)
    """API credentials."""

    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    """Exchange configuration."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    """Retry configuration."""

    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    """Timeout configuration."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    """Price cache configuration."""

    pricing: PricingConfig = field(default_factory=PricingConfig)
    """Price lookup policy."""

    valuation: ValuationConfig = field(default_factory=ValuationConfig)
    """Valuation configuration."""

    def validate(self) -> None:
        """
        Validate settings that would otherwise fail deep inside a call.

        Raises:
            ConfigurationError: On an invalid setting
        """
        if self.retry.max_attempts < 1:
            raise ConfigurationError("retry.max_attempts must be at least 1")
        if self.cache.ttl_seconds <= 0:
            raise ConfigurationError("cache.ttl_seconds must be positive")
        if self.pricing.symbol_fetch_concurrency < 1:
            raise ConfigurationError("pricing.symbol_fetch_concurrency must be at least 1")
        if not self.valuation.reference_asset:
            raise ConfigurationError("valuation.reference_asset must not be empty")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "PortfolioEngineConfig":
        """
        Build configuration from the environment.

        Loads ``env_file`` (or the nearest ``.env`` from the working
        directory upwards) first, without overriding variables that are
        already set.
        """
        load_dotenv(env_file or find_dotenv(usecwd=True))

        exchange = ExchangeConfig(
            rest_url=os.getenv("BINANCE_REST_URL", ExchangeConfig.rest_url),
        )
        recv_window = os.getenv("BINANCE_RECV_WINDOW")
        if recv_window:
            try:
                exchange.recv_window_ms = int(recv_window)
            except ValueError as e:
                raise ConfigurationError(
                    f"BINANCE_RECV_WINDOW must be an integer, got {recv_window!r}"
                ) from e

        credentials = ExchangeCredentials(
            api_key=os.getenv(exchange.api_key_env, ""),
            api_secret=os.getenv(exchange.api_secret_env, ""),
        )
        if not credentials.is_complete:
            logger.warning(
                f"Missing {exchange.api_key_env} or {exchange.api_secret_env}; "
                "signed requests will fail"
            )

        valuation = ValuationConfig(
            reference_asset=os.getenv("PORTFOLIO_REFERENCE_ASSET", "USDT").upper(),
        )
        bridges = os.getenv("PORTFOLIO_BRIDGE_ASSETS")
        if bridges:
            valuation.bridge_assets = tuple(
                b.strip().upper() for b in bridges.split(",") if b.strip()
            )

        config = cls(
            credentials=credentials,
            exchange=exchange,
            valuation=valuation,
        )
        config.validate()
        return config

    @classmethod
    def for_testing(cls) -> "PortfolioEngineConfig":
        """Get configuration for testing."""
        return cls(
            credentials=ExchangeCredentials(api_key="test_key", api_secret="test_secret"),
            exchange=ExchangeConfig(rest_url="https://testnet.binance.vision"),
        )
