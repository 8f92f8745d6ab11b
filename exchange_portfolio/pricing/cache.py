"""
Pricing - Price Cache.

============================================================
PURPOSE
============================================================
Short-TTL memoization in front of price lookups.

KEYS:
- "allPrices" for the full ticker snapshot
- sorted, comma-joined symbols for a targeted subset, so
  [B, A] and [A, B] share one entry

An entry is valid for one TTL window from capture; an expired
entry is a miss and is overwritten by the next put. There is
no other eviction: the key space is bounded by the distinct
symbol sets callers ask for.

============================================================
"""

import logging
import time
from typing import Callable, Dict, Iterable, Optional

from ..types import CacheEntry, PricePayload


logger = logging.getLogger(__name__)


ALL_PRICES_KEY = "allPrices"


def symbols_fingerprint(symbols: Iterable[str]) -> str:
    """Order-independent cache key for a symbol subset."""
    return ",".join(sorted(symbols))


class PriceCache:
    """TTL cache of price payloads keyed by request fingerprint."""

    def __init__(
        self,
        ttl_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get(self, fingerprint: str) -> Optional[PricePayload]:
        """Return the cached payload, or None on a miss or expiry."""
        entry = self._entries.get(fingerprint)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock(), self._ttl_seconds):
            return None
        return entry.payload

    def put(self, fingerprint: str, payload: PricePayload) -> None:
        """Store a payload captured now."""
        self._entries[fingerprint] = CacheEntry(payload=payload, captured_at=self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
