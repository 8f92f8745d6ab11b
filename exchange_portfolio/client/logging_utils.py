"""
Exchange Client - Secure Logging Utilities.

============================================================
PURPOSE
============================================================
One structured log record per request attempt and one per
outcome, with credentials masked before anything is written.

SECURITY REQUIREMENTS:
1. The API key header is never logged in full
2. Signatures are masked wherever they appear (params, URLs, bodies)
3. Bodies are logged as a short hash, never verbatim

============================================================
"""

import hashlib
import itertools
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


logger = logging.getLogger(__name__)


# Lowercased header and parameter names whose values are masked
SENSITIVE_KEYS = frozenset({
    "x-mbx-apikey",
    "authorization",
    "apikey",
    "api_key",
    "api-key",
    "secret",
    "secretkey",
    "secret_key",
    "signature",
    "token",
})

_SENSITIVE_QUERY_PARAM = re.compile(
    r"\b(signature|apikey|api_key|secret|secretkey|secret_key|token)=[^&\s]*",
    re.IGNORECASE,
)

PREVIEW_CHARS = 200


# ============================================================
# MASKING
# ============================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """``abcdefgh`` -> ``abcd...***``; short or empty values become ``***``."""
    if not value or len(value) <= show_chars:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    return {
        name: mask_value(str(value)) if name.lower() in SENSITIVE_KEYS else value
        for name, value in (headers or {}).items()
    }


def mask_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Mask sensitive parameters, descending into nested mappings."""
    masked = {}
    for name, value in (params or {}).items():
        if name.lower() in SENSITIVE_KEYS and value:
            masked[name] = mask_value(str(value))
        elif isinstance(value, Mapping):
            masked[name] = mask_params(value)
        else:
            masked[name] = value
    return masked


def mask_query(query: Optional[str]) -> Optional[str]:
    """Mask sensitive values in a query string, form body or full URL."""
    if not query:
        return query
    return _SENSITIVE_QUERY_PARAM.sub(lambda m: f"{m.group(1)}=***", query)


def _body_digest(body: Optional[str]) -> Optional[str]:
    if not body:
        return None
    return hashlib.sha256(body.encode("utf-8")).hexdigest()[:16]


def _preview(payload: Any) -> Optional[str]:
    if payload is None:
        return None
    if isinstance(payload, (dict, list)):
        text = json.dumps(payload, default=str)
    else:
        text = str(payload)
    return text[:PREVIEW_CHARS]


# ============================================================
# REQUEST LOGGER
# ============================================================

class RequestLogger:
    """
    Per-client attempt logger.

    Request records go out at DEBUG. Outcome records go out at DEBUG
    on success and WARNING on failure. Every record carries a request
    id so the two can be correlated.
    """

    def __init__(self, exchange_id: str, logger_name: Optional[str] = None):
        self._exchange_id = exchange_id
        self._logger = logging.getLogger(
            logger_name or f"exchange_portfolio.client.{exchange_id}"
        )
        self._ids = itertools.count(1)

    def _emit(self, level: int, label: str, record: Dict[str, Any]) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "exchange_id": self._exchange_id,
            **{key: value for key, value in record.items() if value is not None},
        }
        self._logger.log(level, f"{label}: {json.dumps(record, default=str)}")

    def log_request(
        self,
        method: str,
        endpoint: str,
        attempt: int,
        max_attempts: int,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        query: Optional[str] = None,
        body: Optional[str] = None,
    ) -> str:
        """
        Log an outgoing attempt.

        Returns:
            Request id for the matching log_response call
        """
        request_id = f"{self._exchange_id}-{next(self._ids)}"
        self._emit(logging.DEBUG, "REQUEST", {
            "request_id": request_id,
            "method": method,
            "endpoint": endpoint,
            "attempt": f"{attempt}/{max_attempts}",
            "headers": mask_headers(headers) or None,
            "params": mask_params(params) or None,
            "query": mask_query(query),
            "body_sha256": _body_digest(body),
        })
        return request_id

    def log_response(
        self,
        endpoint: str,
        request_id: str,
        status_code: int,
        latency_ms: float,
        success: bool,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        response_body: Any = None,
    ) -> None:
        """
        Log how an attempt ended.

        ``status_code`` is 0 when no response arrived.
        """
        self._emit(
            logging.DEBUG if success else logging.WARNING,
            "RESPONSE" if success else "RESPONSE_ERROR",
            {
                "request_id": request_id,
                "endpoint": endpoint,
                "status_code": status_code,
                "latency_ms": round(latency_ms, 3),
                "success": success,
                "error_code": error_code,
                "error_message": error_message[:PREVIEW_CHARS] if error_message else None,
                "response_preview": _preview(response_body),
            },
        )
