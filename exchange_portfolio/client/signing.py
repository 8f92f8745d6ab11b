"""
Exchange Client - Request Signing.

============================================================
PURPOSE
============================================================
Query-string canonicalization and HMAC-SHA256 signatures for
authenticated exchange requests.

The signature covers exactly ``parameters&timestamp=<ms>``;
``&signature=<hex>`` is appended afterwards and is never part
of its own input.

============================================================
"""

import hashlib
import hmac
import time
from typing import Any, Mapping, Optional

from ..types import SignedRequest


def build_query_string(parameters: Optional[Mapping[str, Any]] = None) -> str:
    """
    Join parameters as ``key=value`` pairs in insertion order.

    Values are not re-encoded; callers control ordering and content.
    """
    if not parameters:
        return ""
    return "&".join(f"{key}={value}" for key, value in parameters.items())


def create_signature(secret: str, payload: str) -> str:
    """HMAC-SHA256 of ``payload`` keyed with ``secret``, hex-encoded."""
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def current_timestamp_ms(offset_ms: int = 0) -> int:
    """Wall-clock milliseconds, shifted by a server time offset."""
    return int(time.time() * 1000) + offset_ms


def sign_request(
    method: str,
    endpoint: str,
    parameters: Optional[Mapping[str, Any]],
    secret: str,
    timestamp: int,
) -> SignedRequest:
    """
    Build a signed request for one attempt.

    Args:
        method: HTTP method
        endpoint: API path
        parameters: Ordered request parameters
        secret: API secret
        timestamp: Request timestamp in milliseconds

    Returns:
        SignedRequest whose ``payload`` is ready to send
    """
    query_string = build_query_string(parameters)
    if query_string:
        query_string = f"{query_string}&timestamp={timestamp}"
    else:
        query_string = f"timestamp={timestamp}"

    return SignedRequest(
        method=method.upper(),
        endpoint=endpoint,
        query=query_string,
        timestamp=timestamp,
        signature=create_signature(secret, query_string),
    )
