"""
Exchange Client - Signed Request Client.

============================================================
PURPOSE
============================================================
Builds exchange-authenticated requests and executes them over
aiohttp with bounded retry/backoff.

SAFETY FEATURES:
- Fail fast on missing credentials (no network call)
- Fresh timestamp and signature on every attempt
- Bounded retries, no retry on exchange rejections
- Credential masking in every log record

============================================================
FAILURE CLASSES
============================================================
HTTP 429                         -> RATE_LIMIT   (retried)
Connect error / DNS / timeout    -> NETWORK      (retried)
Server disconnected / no reply   -> NO_RESPONSE  (retried)
Other HTTP >= 400                -> ExchangeRejected (raised)

============================================================
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

import aiohttp

from ..config import (
    ExchangeConfig,
    ExchangeCredentials,
    PortfolioEngineConfig,
    RetryConfig,
    TimeoutConfig,
)
from ..errors import (
    ConfigurationError,
    FailureClass,
    InvalidResponseError,
    TransientFailure,
    rejection_from_response,
)
from .logging_utils import RequestLogger
from .metrics import RequestMetrics
from .retry import RetryPolicy
from .signing import build_query_string, current_timestamp_ms, sign_request


logger = logging.getLogger(__name__)


API_KEY_HEADER = "X-MBX-APIKEY"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


# ============================================================
# SIGNED REQUEST CLIENT
# ============================================================

class SignedRequestClient:
    """
    Authenticated REST client for the exchange.

    Holds no state across calls besides credentials, the HTTP session
    and the server time offset.
    """

    exchange_id = "binance"

    def __init__(
        self,
        credentials: Optional[ExchangeCredentials] = None,
        exchange_config: Optional[ExchangeConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout_config: Optional[TimeoutConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timestamp_provider: Callable[[int], int] = current_timestamp_ms,
    ):
        """
        Initialize the client.

        Args:
            credentials: API key and secret
            exchange_config: Exchange configuration
            retry_config: Retry configuration
            timeout_config: Timeout configuration
            session: Existing aiohttp session (not closed by this client)
            sleep: Awaitable sleep used between attempts
            timestamp_provider: Returns request timestamps in ms given
                the server time offset
        """
        self._credentials = credentials or ExchangeCredentials()
        self._exchange = exchange_config or ExchangeConfig()
        self._timeout_config = timeout_config or TimeoutConfig()
        self._retry_policy = RetryPolicy(retry_config, sleep=sleep)
        self._timestamp_provider = timestamp_provider

        self._session = session
        self._owns_session = session is None
        self._time_offset_ms = 0

        self._request_logger = RequestLogger(self.exchange_id)
        self._metrics = RequestMetrics(self.exchange_id)

        if not self._credentials.is_complete:
            logger.warning(
                "Exchange credentials are incomplete; signed requests will be refused"
            )

    @classmethod
    def from_config(
        cls,
        config: PortfolioEngineConfig,
        **kwargs: Any,
    ) -> "SignedRequestClient":
        """Create a client from the master configuration."""
        return cls(
            credentials=config.credentials,
            exchange_config=config.exchange,
            retry_config=config.retry,
            timeout_config=config.timeout,
            **kwargs,
        )

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def has_credentials(self) -> bool:
        return self._credentials.is_complete

    @property
    def metrics(self) -> RequestMetrics:
        return self._metrics

    @property
    def time_offset_ms(self) -> int:
        return self._time_offset_ms

    # --------------------------------------------------------
    # SESSION
    # --------------------------------------------------------

    def _get_session(self) -> aiohttp.ClientSession:
        """Return the HTTP session, creating one on first use."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                connect=self._timeout_config.connection_timeout_seconds,
                total=self._timeout_config.total_timeout_seconds,
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "SignedRequestClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --------------------------------------------------------
    # PUBLIC API
    # --------------------------------------------------------

    async def execute(
        self,
        endpoint: str,
        parameters: Optional[Mapping[str, Any]] = None,
        method: str = "GET",
        max_attempts: Optional[int] = None,
        signed: bool = True,
    ) -> Any:
        """
        Execute a request with retry/backoff.

        Args:
            endpoint: API path (e.g. /api/v3/account)
            parameters: Ordered request parameters
            method: HTTP method
            max_attempts: Attempt ceiling (default from RetryConfig)
            signed: Whether to authenticate the request

        Returns:
            Decoded response body

        Raises:
            ConfigurationError: Signed request without credentials
            ExchangeRejected: Non-429 HTTP error
            RateLimitExhausted, NetworkExhausted, NoResponseExhausted:
                Retries used up
        """
        if signed and not self._credentials.is_complete:
            raise ConfigurationError(
                f"Missing {self._exchange.api_key_env} or "
                f"{self._exchange.api_secret_env} environment variables"
            )

        method = method.upper()
        attempts = max_attempts if max_attempts is not None else self._retry_policy.max_attempts

        async def attempt(number: int) -> Any:
            return await self._send(endpoint, parameters, method, signed, number, attempts)

        return await self._retry_policy.run(
            attempt,
            max_attempts=attempts,
            description=endpoint,
        )

    async def sync_server_time(self) -> int:
        """
        Align request timestamps with the exchange clock.

        Returns:
            The stored offset in milliseconds (server minus local)
        """
        data = await self.execute(self._exchange.server_time_endpoint, signed=False)
        if not isinstance(data, dict) or "serverTime" not in data:
            raise InvalidResponseError(
                f"Unexpected server time payload: {data!r}",
                endpoint=self._exchange.server_time_endpoint,
            )

        self._time_offset_ms = int(data["serverTime"]) - self._timestamp_provider(0)
        logger.info(f"Server time offset set to {self._time_offset_ms}ms")
        return self._time_offset_ms

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _build(
        self,
        endpoint: str,
        parameters: Optional[Mapping[str, Any]],
        method: str,
        signed: bool,
    ) -> Tuple[str, Optional[str], Dict[str, str]]:
        """Build url, body and headers for one attempt."""
        headers: Dict[str, str] = {}
        params = dict(parameters or {})

        if signed:
            if self._exchange.recv_window_ms and "recvWindow" not in params:
                params["recvWindow"] = self._exchange.recv_window_ms
            signed_request = sign_request(
                method,
                endpoint,
                params,
                self._credentials.api_secret,
                self._timestamp_provider(self._time_offset_ms),
            )
            payload = signed_request.payload
            headers[API_KEY_HEADER] = self._credentials.api_key
        else:
            payload = build_query_string(params)

        base = f"{self._exchange.rest_url}{endpoint}"

        if method == "GET":
            url = f"{base}?{payload}" if payload else base
            return url, None, headers

        headers["Content-Type"] = FORM_CONTENT_TYPE
        return base, payload, headers

    async def _send(
        self,
        endpoint: str,
        parameters: Optional[Mapping[str, Any]],
        method: str,
        signed: bool,
        attempt: int,
        max_attempts: int,
    ) -> Any:
        """Run a single attempt and classify its outcome."""
        url, body, headers = self._build(endpoint, parameters, method, signed)

        request_id = self._request_logger.log_request(
            method,
            endpoint,
            attempt,
            max_attempts,
            headers=headers,
            params=parameters,
            query=body if body is not None else url,
            body=body,
        )
        logger.info(
            f"Making {method} request to: {endpoint} (attempt {attempt}/{max_attempts})"
        )

        session = self._get_session()
        started = time.monotonic()

        try:
            async with session.request(method, url, data=body, headers=headers) as response:
                status = response.status
                reason = response.reason
                payload = await self._read_body(response)

        except asyncio.TimeoutError as e:
            raise self._transient(
                FailureClass.NETWORK, f"Request timed out: {str(e) or 'timeout'}",
                endpoint, request_id, started,
            ) from e
        except aiohttp.ClientConnectorError as e:
            raise self._transient(
                FailureClass.NETWORK, f"Connection failed: {e}",
                endpoint, request_id, started,
            ) from e
        except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as e:
            raise self._transient(
                FailureClass.NO_RESPONSE, f"No response received: {str(e) or type(e).__name__}",
                endpoint, request_id, started,
            ) from e
        except aiohttp.ClientError as e:
            raise self._transient(
                FailureClass.NO_RESPONSE, f"Unusable response: {type(e).__name__}",
                endpoint, request_id, started,
            ) from e

        latency_ms = (time.monotonic() - started) * 1000
        logger.info(f"Response status: {status} for {endpoint}")

        if status == 429:
            self._record(endpoint, request_id, latency_ms, False, status, "RATE_LIMIT", payload=payload)
            raise TransientFailure(
                FailureClass.RATE_LIMIT,
                f"Rate limited (HTTP 429) on {endpoint}",
                http_status=status,
            )

        if status >= 400:
            rejection = rejection_from_response(status, payload, reason, endpoint=endpoint)
            self._record(
                endpoint, request_id, latency_ms, False, status,
                rejection.code, message=rejection.message, payload=payload,
            )
            logger.error(f"API Error {status} on {endpoint}: {rejection.message}")
            raise rejection

        self._record(endpoint, request_id, latency_ms, True, status, payload=payload)
        return payload

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        """Decode a JSON body, keeping the raw text when it is not JSON."""
        text = await response.text()
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    def _transient(
        self,
        failure_class: FailureClass,
        message: str,
        endpoint: str,
        request_id: str,
        started: float,
    ) -> TransientFailure:
        """Record a transport failure and wrap it for the retry policy."""
        latency_ms = (time.monotonic() - started) * 1000
        self._record(
            endpoint, request_id, latency_ms, False, 0,
            failure_class.value, message=message,
        )
        logger.error(f"{failure_class.value} error on {endpoint}: {message}")
        return TransientFailure(failure_class, message)

    def _record(
        self,
        endpoint: str,
        request_id: str,
        latency_ms: float,
        success: bool,
        status_code: int,
        error_code: Optional[str] = None,
        message: Optional[str] = None,
        payload: Any = None,
    ) -> None:
        """Emit the per-attempt log record and metrics sample."""
        self._request_logger.log_response(
            endpoint,
            request_id,
            status_code,
            latency_ms,
            success,
            error_code=error_code,
            error_message=message,
            response_body=payload,
        )
        self._metrics.record_request(
            endpoint,
            latency_ms,
            success,
            status_code=status_code,
            error_code=error_code,
        )
