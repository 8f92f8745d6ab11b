"""
Exchange Portfolio - Client Package.

============================================================
PURPOSE
============================================================
Authenticated access to the exchange REST API.

COMPONENTS:
- SignedRequestClient: Signing + execution with retry/backoff
- RetryPolicy: One backoff policy for all transient failures
- RequestLogger: Credential-masked per-attempt logging
- RequestMetrics: Per-attempt latency and error counters

============================================================
"""

from .signing import (
    build_query_string,
    create_signature,
    current_timestamp_ms,
    sign_request,
)
from .retry import RetryPolicy
from .logging_utils import (
    RequestLogger,
    mask_headers,
    mask_params,
    mask_query,
    mask_value,
)
from .metrics import RequestMetrics, AttemptOutcome
from .signed_client import SignedRequestClient, API_KEY_HEADER


__all__ = [
    # Signing
    "build_query_string",
    "create_signature",
    "current_timestamp_ms",
    "sign_request",
    # Retry
    "RetryPolicy",
    # Logging
    "RequestLogger",
    "mask_headers",
    "mask_params",
    "mask_query",
    "mask_value",
    # Metrics
    "RequestMetrics",
    "AttemptOutcome",
    # Client
    "SignedRequestClient",
    "API_KEY_HEADER",
]
