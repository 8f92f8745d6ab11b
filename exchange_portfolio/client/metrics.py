"""
Exchange Client - Request Metrics.

============================================================
PURPOSE
============================================================
Per-attempt metrics for exchange requests.

Each attempt ends in exactly one AttemptOutcome. Outcomes and
latencies are kept per endpoint; the summary folds them into
client-wide totals. A request that succeeds on its third try
contributes two failed attempts and one success.

============================================================
"""

import logging
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple


logger = logging.getLogger(__name__)


# ============================================================
# OUTCOMES
# ============================================================

class AttemptOutcome(Enum):
    """How a single request attempt ended."""

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    NO_RESPONSE = "no_response"
    REJECTED = "rejected"

    @classmethod
    def from_error_code(cls, error_code: Optional[str]) -> "AttemptOutcome":
        """Map a recorded error code; unknown codes are exchange rejections."""
        return _OUTCOME_BY_CODE.get(error_code, cls.REJECTED)


_OUTCOME_BY_CODE = {
    "RATE_LIMIT": AttemptOutcome.RATE_LIMITED,
    "NETWORK": AttemptOutcome.NETWORK,
    "NO_RESPONSE": AttemptOutcome.NO_RESPONSE,
}


# ============================================================
# PER-ENDPOINT STATS
# ============================================================

@dataclass
class EndpointStats:
    """Attempt outcomes and latency for one endpoint."""

    attempts: int = 0
    latency_total_ms: float = 0.0
    fastest_ms: Optional[float] = None
    slowest_ms: float = 0.0
    outcomes: Counter = field(default_factory=Counter)

    def add(self, latency_ms: float, outcome: AttemptOutcome) -> None:
        self.attempts += 1
        self.latency_total_ms += latency_ms
        if self.fastest_ms is None or latency_ms < self.fastest_ms:
            self.fastest_ms = latency_ms
        self.slowest_ms = max(self.slowest_ms, latency_ms)
        self.outcomes[outcome] += 1

    @property
    def mean_ms(self) -> float:
        if not self.attempts:
            return 0.0
        return self.latency_total_ms / self.attempts

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.attempts,
            "avg_ms": self.mean_ms,
            "min_ms": self.fastest_ms or 0.0,
            "max_ms": self.slowest_ms,
        }


# ============================================================
# REQUEST METRICS
# ============================================================

class RequestMetrics:
    """Metrics collector for one exchange client."""

    WINDOW_SECONDS = 60

    def __init__(self, exchange_id: str, max_recent: int = 100):
        """
        Initialize metrics.

        Args:
            exchange_id: Exchange identifier
            max_recent: Size of the recent-attempts ring
        """
        self._exchange_id = exchange_id
        self._max_recent = max_recent
        self.reset()

    def reset(self) -> None:
        """Drop everything recorded so far."""
        self._started_at = datetime.now(timezone.utc)
        self._endpoints: Dict[str, EndpointStats] = {}
        self._error_codes: Counter = Counter()
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=self._max_recent)
        self._window: Deque[Tuple[float, bool]] = deque()

    def record_request(
        self,
        endpoint: str,
        latency_ms: float,
        success: bool,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ) -> None:
        """
        Record one request attempt.

        Args:
            endpoint: API path
            latency_ms: Attempt latency
            success: Whether the attempt succeeded
            status_code: HTTP status (0 when nothing came back)
            error_code: Failure class or exchange code of a failed attempt
        """
        if success:
            outcome = AttemptOutcome.SUCCESS
        else:
            outcome = AttemptOutcome.from_error_code(error_code)
            if error_code:
                self._error_codes[error_code] += 1

        self._endpoints.setdefault(endpoint, EndpointStats()).add(latency_ms, outcome)
        self._window.append((time.monotonic(), success))
        self._recent.append({
            "at": datetime.now(timezone.utc).isoformat(),
            "endpoint": endpoint,
            "latency_ms": latency_ms,
            "outcome": outcome.value,
            "status_code": status_code,
            "error_code": error_code,
        })

    # --------------------------------------------------------
    # REPORTING
    # --------------------------------------------------------

    def _totals(self) -> EndpointStats:
        totals = EndpointStats()
        for stats in self._endpoints.values():
            totals.attempts += stats.attempts
            totals.latency_total_ms += stats.latency_total_ms
            totals.slowest_ms = max(totals.slowest_ms, stats.slowest_ms)
            if stats.fastest_ms is not None and (
                totals.fastest_ms is None or stats.fastest_ms < totals.fastest_ms
            ):
                totals.fastest_ms = stats.fastest_ms
            totals.outcomes.update(stats.outcomes)
        return totals

    def _last_window(self) -> Dict[str, int]:
        cutoff = time.monotonic() - self.WINDOW_SECONDS
        while self._window and self._window[0][0] < cutoff:
            self._window.popleft()
        succeeded = sum(1 for _, ok in self._window if ok)
        return {"success": succeeded, "failure": len(self._window) - succeeded}

    def get_summary(self) -> Dict[str, Any]:
        """Client-wide totals."""
        totals = self._totals()
        succeeded = totals.outcomes[AttemptOutcome.SUCCESS]
        failed = totals.attempts - succeeded

        return {
            "exchange_id": self._exchange_id,
            "uptime_seconds": (datetime.now(timezone.utc) - self._started_at).total_seconds(),
            "requests": {
                "total": totals.attempts,
                "success": succeeded,
                "failure": failed,
                "success_rate": succeeded / totals.attempts if totals.attempts else 1.0,
                "last_minute": self._last_window(),
            },
            "latency": {
                key: value for key, value in totals.to_dict().items() if key != "count"
            },
            "errors": {
                "rate_limit_hits": totals.outcomes[AttemptOutcome.RATE_LIMITED],
                "connection_errors": totals.outcomes[AttemptOutcome.NETWORK],
                "no_response": totals.outcomes[AttemptOutcome.NO_RESPONSE],
                "rejected": totals.outcomes[AttemptOutcome.REJECTED],
                "by_code": dict(self._error_codes),
            },
        }

    def get_latency_by_endpoint(self) -> Dict[str, Dict[str, float]]:
        return {endpoint: stats.to_dict() for endpoint, stats in self._endpoints.items()}

    def get_recent_requests(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent attempts, oldest first."""
        return list(self._recent)[-limit:]
