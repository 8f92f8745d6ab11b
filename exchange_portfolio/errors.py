"""
Exchange Portfolio - Error Taxonomy.

============================================================
PURPOSE
============================================================
Unified error handling for the exchange client and the
services built on top of it:
- Exception hierarchy with retry eligibility
- Binance error code mapping
- Distinct exhaustion errors per failure class

============================================================
ERROR CLASSES
============================================================
1. ConfigurationError   - Missing credentials, bad settings
2. RateLimitExhausted   - Every attempt answered with 429
3. NetworkExhausted     - Connection failures on every attempt
4. NoResponseExhausted  - Request sent, never answered
5. ExchangeRejected     - Non-429 HTTP error, not retried
6. PartialFetchFailure  - One symbol failed inside a batch

============================================================
"""

import logging
from enum import Enum
from typing import Optional, Dict, Any


logger = logging.getLogger(__name__)


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Standardized error categories."""

    NETWORK = "NETWORK"
    NO_RESPONSE = "NO_RESPONSE"
    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    INVALID_REQUEST = "INVALID_REQUEST"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    TIMESTAMP = "TIMESTAMP"
    EXCHANGE_ERROR = "EXCHANGE_ERROR"
    CONFIGURATION = "CONFIGURATION"
    UNKNOWN = "UNKNOWN"


class FailureClass(Enum):
    """Transient failure classes handled by the retry policy."""

    RATE_LIMIT = "RATE_LIMIT"
    NETWORK = "NETWORK"
    NO_RESPONSE = "NO_RESPONSE"


# ============================================================
# EXCEPTIONS
# ============================================================

class PortfolioEngineError(Exception):
    """Base exception for the exchange portfolio engine."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        is_retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.is_retryable = is_retryable

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "is_retryable": self.is_retryable,
        }


class ConfigurationError(PortfolioEngineError):
    """Credentials or settings are missing. Never retried."""

    def __init__(self, message: str):
        super().__init__(message, code="CONFIGURATION", is_retryable=False)


class TransientFailure(PortfolioEngineError):
    """
    A single attempt failed in a way the retry policy may recover from.

    Raised by one attempt and consumed by RetryPolicy; callers only
    ever see the matching RetryExhaustedError subclass.
    """

    def __init__(
        self,
        failure_class: FailureClass,
        message: str,
        http_status: Optional[int] = None,
    ):
        super().__init__(message, code=failure_class.value, is_retryable=True)
        self.failure_class = failure_class
        self.http_status = http_status


class RetryExhaustedError(PortfolioEngineError):
    """All retry attempts were consumed by one failure class."""

    failure_class: FailureClass = None

    def __init__(
        self,
        message: str,
        attempts: int,
        endpoint: Optional[str] = None,
        last_error: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            code=f"{self.failure_class.value}_EXHAUSTED",
            is_retryable=True,
        )
        self.attempts = attempts
        self.endpoint = endpoint
        self.last_error = last_error


class RateLimitExhausted(RetryExhaustedError):
    """Every attempt was answered with HTTP 429."""

    failure_class = FailureClass.RATE_LIMIT


class NetworkExhausted(RetryExhaustedError):
    """Connection refused, timed out or host unresolved on every attempt."""

    failure_class = FailureClass.NETWORK


class NoResponseExhausted(RetryExhaustedError):
    """The request went out but no reply arrived on any attempt."""

    failure_class = FailureClass.NO_RESPONSE


class ExchangeRejected(PortfolioEngineError):
    """The exchange answered with a non-429 HTTP error."""

    def __init__(
        self,
        message: str,
        http_status: int,
        exchange_code: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        endpoint: Optional[str] = None,
    ):
        code = f"BINANCE_{exchange_code}" if exchange_code is not None else f"HTTP_{http_status}"
        super().__init__(message, code=code, is_retryable=False)
        self.http_status = http_status
        self.exchange_code = exchange_code
        self.category = category
        self.endpoint = endpoint

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "http_status": self.http_status,
            "exchange_code": self.exchange_code,
            "category": self.category.value,
            "endpoint": self.endpoint,
        })
        return data


class InvalidResponseError(PortfolioEngineError):
    """The exchange returned a body with an unexpected shape."""

    def __init__(self, message: str, endpoint: Optional[str] = None):
        super().__init__(message, code="INVALID_RESPONSE", is_retryable=False)
        self.endpoint = endpoint


class PartialFetchFailure(PortfolioEngineError):
    """One symbol lookup failed inside a batch. Logged and skipped."""

    def __init__(self, symbol: str, cause: BaseException):
        super().__init__(
            f"Failed to fetch price for {symbol}: {cause}",
            code="PARTIAL_FETCH",
            is_retryable=getattr(cause, "is_retryable", False),
        )
        self.symbol = symbol
        self.cause = cause


EXHAUSTION_ERRORS: Dict[FailureClass, type] = {
    FailureClass.RATE_LIMIT: RateLimitExhausted,
    FailureClass.NETWORK: NetworkExhausted,
    FailureClass.NO_RESPONSE: NoResponseExhausted,
}


def exhaustion_error(
    failure: TransientFailure,
    attempts: int,
    endpoint: Optional[str] = None,
) -> RetryExhaustedError:
    """Build the terminal error for a failure class after the last attempt."""
    error_cls = EXHAUSTION_ERRORS[failure.failure_class]

    if failure.failure_class == FailureClass.RATE_LIMIT:
        message = f"Rate limited on {endpoint} after {attempts} attempts"
    elif failure.failure_class == FailureClass.NETWORK:
        message = f"Network error on {endpoint} after {attempts} attempts: {failure.message}"
    else:
        message = f"No response from server for {endpoint} after {attempts} attempts"

    return error_cls(message, attempts=attempts, endpoint=endpoint, last_error=failure)


# ============================================================
# BINANCE ERROR MAPPING
# ============================================================

# Binance error codes to unified category
BINANCE_ERROR_MAP: Dict[int, ErrorCategory] = {
    # Rate limiting
    -1003: ErrorCategory.RATE_LIMIT,
    -1015: ErrorCategory.RATE_LIMIT,

    # Authentication
    -1002: ErrorCategory.AUTHENTICATION,
    -1022: ErrorCategory.AUTHENTICATION,
    -2014: ErrorCategory.AUTHENTICATION,
    -2015: ErrorCategory.AUTHENTICATION,

    # Timestamp outside recvWindow
    -1021: ErrorCategory.TIMESTAMP,

    # Request validation
    -1100: ErrorCategory.INVALID_REQUEST,
    -1101: ErrorCategory.INVALID_REQUEST,
    -1102: ErrorCategory.INVALID_REQUEST,
    -1104: ErrorCategory.INVALID_REQUEST,
    -1105: ErrorCategory.INVALID_REQUEST,
    -1106: ErrorCategory.INVALID_REQUEST,
    -1121: ErrorCategory.SYMBOL_NOT_FOUND,

    # Exchange internal
    -1000: ErrorCategory.EXCHANGE_ERROR,
    -1001: ErrorCategory.EXCHANGE_ERROR,
    -1006: ErrorCategory.EXCHANGE_ERROR,
    -1007: ErrorCategory.EXCHANGE_ERROR,
}


def categorize_binance_error(
    code: Optional[int],
    http_status: Optional[int] = None,
) -> ErrorCategory:
    """
    Map a Binance error code to a unified category.

    Args:
        code: Binance error code (``code`` field of the error body)
        http_status: HTTP status code

    Returns:
        ErrorCategory
    """
    if code is not None and code in BINANCE_ERROR_MAP:
        return BINANCE_ERROR_MAP[code]
    if http_status in (418, 429):
        return ErrorCategory.RATE_LIMIT
    if http_status in (401, 403):
        return ErrorCategory.AUTHENTICATION
    if http_status and http_status >= 500:
        return ErrorCategory.EXCHANGE_ERROR
    return ErrorCategory.UNKNOWN


def rejection_from_response(
    http_status: int,
    body: Any,
    reason: Optional[str] = None,
    endpoint: Optional[str] = None,
) -> ExchangeRejected:
    """
    Build an ExchangeRejected from an error response.

    Uses the exchange's ``msg`` when the body carries one, otherwise
    the HTTP reason phrase.
    """
    exchange_code = None
    message = None

    if isinstance(body, dict):
        message = body.get("msg")
        raw_code = body.get("code")
        if raw_code is not None:
            try:
                exchange_code = int(raw_code)
            except (TypeError, ValueError):
                exchange_code = None

    if not message:
        message = reason or f"HTTP {http_status}"

    return ExchangeRejected(
        f"API Error {http_status}: {message}",
        http_status=http_status,
        exchange_code=exchange_code,
        category=categorize_binance_error(exchange_code, http_status),
        endpoint=endpoint,
    )
