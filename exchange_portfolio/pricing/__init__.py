"""
Exchange Portfolio - Pricing Package.

COMPONENTS:
- PriceCache: TTL memoization keyed by request fingerprint
- PriceService: Full snapshot and targeted price lookups
"""

from .cache import PriceCache, ALL_PRICES_KEY, symbols_fingerprint
from .service import PriceService


__all__ = [
    "PriceCache",
    "ALL_PRICES_KEY",
    "symbols_fingerprint",
    "PriceService",
]
