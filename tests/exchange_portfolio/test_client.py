"""
Signed Request Client Tests.

============================================================
PURPOSE
============================================================
Tests for request signing, execution and retry/backoff.

TEST CATEGORIES:
- Signing tests: Query format and HMAC signatures
- Execution tests: URLs, headers, bodies
- Retry tests: Backoff per failure class, attempt ceiling
- Rejection tests: Non-retried HTTP errors

============================================================
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from exchange_portfolio.client import (
    API_KEY_HEADER,
    RetryPolicy,
    build_query_string,
    create_signature,
    sign_request,
)
from exchange_portfolio.config import ExchangeConfig, ExchangeCredentials, RetryConfig
from exchange_portfolio.errors import (
    ConfigurationError,
    ErrorCategory,
    ExchangeRejected,
    FailureClass,
    InvalidResponseError,
    NetworkExhausted,
    NoResponseExhausted,
    RateLimitExhausted,
    TransientFailure,
)


ACCOUNT = "/api/v3/account"
TICKER = "/api/v3/ticker/price"
BASE_URL = "https://testnet.binance.vision"
TS = 1700000000000


def sleeps(sleep: AsyncMock):
    return [c.args[0] for c in sleep.await_args_list]


# ============================================================
# SIGNING TESTS
# ============================================================

class TestSigning:
    """Tests for query strings and signatures."""

    def test_query_string_keeps_insertion_order(self):
        """Test query strings keep parameter insertion order."""
        assert build_query_string({"symbol": "LTCBTC", "side": "BUY"}) == "symbol=LTCBTC&side=BUY"
        assert build_query_string({"side": "BUY", "symbol": "LTCBTC"}) == "side=BUY&symbol=LTCBTC"

    def test_empty_query_string(self):
        """Test empty and missing parameters give an empty query."""
        assert build_query_string({}) == ""
        assert build_query_string(None) == ""

    def test_known_signature(self):
        """Published exchange example vector."""
        secret = "NhqPtmdSJYdKjVHjA7PZj4Mge3R5YNiP1e3UZjInClVN65XAbvqqM6A7H5fATj0j"
        payload = (
            "symbol=LTCBTC&side=BUY&type=LIMIT&timeInForce=GTC"
            "&quantity=1&price=0.1&recvWindow=5000&timestamp=1499827319559"
        )

        assert create_signature(secret, payload) == (
            "c8db56825ae71d6d79447849e617115f4a920fa2acdcab2b053c4b2838bd6b71"
        )

    def test_signature_is_deterministic(self):
        """Test the same payload always signs the same."""
        assert create_signature("secret", "timestamp=1") == create_signature("secret", "timestamp=1")

    def test_signature_changes_with_any_character(self):
        """Test any change to payload or secret changes the signature."""
        assert create_signature("secret", "timestamp=1") != create_signature("secret", "timestamp=2")
        assert create_signature("secret", "timestamp=1") != create_signature("secreT", "timestamp=1")

    def test_sign_request_without_parameters(self):
        """Test signing a request with only the timestamp."""
        signed = sign_request("get", ACCOUNT, {}, "secret", TS)

        assert signed.method == "GET"
        assert signed.query == f"timestamp={TS}"
        assert signed.signature == create_signature("secret", f"timestamp={TS}")
        assert signed.payload == f"timestamp={TS}&signature={signed.signature}"

    def test_sign_request_appends_timestamp_last(self):
        """Test timestamp goes last and signature after it."""
        signed = sign_request("GET", TICKER, {"symbol": "BTCUSDT"}, "secret", TS)

        assert signed.query == f"symbol=BTCUSDT&timestamp={TS}"
        assert signed.payload.endswith(f"&signature={signed.signature}")
        assert "signature" not in signed.query


# ============================================================
# EXECUTION TESTS
# ============================================================

class TestExecution:
    """Tests for request construction and success paths."""

    @pytest.mark.asyncio
    async def test_signed_get(self, make_session, make_client):
        """Test a signed GET carries signature and API key."""
        session = make_session((200, {"balances": []}))
        client = make_client(session)

        result = await client.execute(ACCOUNT)

        assert result == {"balances": []}
        assert len(session.calls) == 1
        call = session.calls[0]
        signature = create_signature("test_secret", f"timestamp={TS}")
        assert call["method"] == "GET"
        assert call["url"] == f"{BASE_URL}{ACCOUNT}?timestamp={TS}&signature={signature}"
        assert call["data"] is None
        assert call["headers"][API_KEY_HEADER] == "test_key"

    @pytest.mark.asyncio
    async def test_unsigned_get_has_no_credentials(self, make_session, make_client, no_credentials):
        """Test a public GET sends no key and no signature."""
        session = make_session((200, {"symbol": "BTCUSDT", "price": "50000.00"}))
        client = make_client(session, credentials=no_credentials)

        result = await client.execute(TICKER, {"symbol": "BTCUSDT"}, signed=False)

        assert result == {"symbol": "BTCUSDT", "price": "50000.00"}
        call = session.calls[0]
        assert call["url"] == f"{BASE_URL}{TICKER}?symbol=BTCUSDT"
        assert API_KEY_HEADER not in call["headers"]

    @pytest.mark.asyncio
    async def test_post_sends_form_body(self, make_session, make_client):
        """Test POST parameters travel as a signed form body."""
        session = make_session((200, {}))
        client = make_client(session)

        await client.execute("/api/v3/order/test", {"symbol": "BTCUSDT"}, method="post")

        call = session.calls[0]
        query = f"symbol=BTCUSDT&timestamp={TS}"
        assert call["method"] == "POST"
        assert call["url"] == f"{BASE_URL}/api/v3/order/test"
        assert call["data"] == f"{query}&signature={create_signature('test_secret', query)}"
        assert call["headers"]["Content-Type"] == "application/x-www-form-urlencoded"

    @pytest.mark.asyncio
    async def test_recv_window_is_signed(self, make_session, make_client):
        """Test recvWindow is added before signing."""
        session = make_session((200, {}))
        client = make_client(
            session,
            exchange_config=ExchangeConfig(rest_url=BASE_URL, recv_window_ms=5000),
        )

        await client.execute(ACCOUNT)

        assert f"?recvWindow=5000&timestamp={TS}&signature=" in session.calls[0]["url"]

    @pytest.mark.asyncio
    async def test_non_json_body_is_returned_as_text(self, make_session, make_client):
        """Test a non-JSON body comes back as text."""
        session = make_session((200, "pong"))
        client = make_client(session)

        assert await client.execute("/api/v3/ping", signed=False) == "pong"

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_before_network(
        self, make_session, make_client, no_credentials, sleep
    ):
        """Test signed requests without credentials never hit the network."""
        session = make_session((200, {}))
        client = make_client(session, credentials=no_credentials)

        with pytest.raises(ConfigurationError, match="BINANCE_API_KEY or BINANCE_SECRET_KEY"):
            await client.execute(ACCOUNT)

        assert session.calls == []
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_key_without_secret_fails_before_network(
        self, make_session, make_client, sleep
    ):
        """Test a key without a secret is refused before the network."""
        session = make_session((200, {}))
        client = make_client(session, credentials=ExchangeCredentials(api_key="test_key"))

        with pytest.raises(ConfigurationError):
            await client.execute(ACCOUNT)

        assert session.calls == []
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_external_session_is_not_closed(self, make_session, make_client):
        """Test closing the client leaves an injected session open."""
        session = make_session((200, {}))
        client = make_client(session)

        await client.close()

        assert session.closed is False

    @pytest.mark.asyncio
    async def test_sync_server_time_shifts_timestamps(self, make_session, make_client):
        """Test server time sync offsets later timestamps."""
        session = make_session((200, {"serverTime": TS + 5000}), (200, {}))
        client = make_client(session)

        offset = await client.sync_server_time()
        await client.execute(ACCOUNT)

        assert offset == 5000
        assert client.time_offset_ms == 5000
        assert session.calls[0]["url"] == f"{BASE_URL}/api/v3/time"
        assert f"timestamp={TS + 5000}&" in session.calls[1]["url"]

    @pytest.mark.asyncio
    async def test_sync_server_time_rejects_bad_payload(self, make_session, make_client):
        """Test server time sync rejects a payload without serverTime."""
        client = make_client(make_session((200, {})))

        with pytest.raises(InvalidResponseError):
            await client.sync_server_time()


# ============================================================
# RETRY TESTS
# ============================================================

class TestRetry:
    """Tests for transient failures and backoff."""

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_after_three_attempts(
        self, make_session, make_client, sleep
    ):
        """Test HTTP 429 retries twice and then gives up."""
        session = make_session((429, {"code": -1003, "msg": "Too many requests."}))
        client = make_client(session)

        with pytest.raises(RateLimitExhausted) as exc_info:
            await client.execute(ACCOUNT)

        assert len(session.calls) == 3
        assert sleeps(sleep) == [2, 4]
        assert exc_info.value.attempts == 3
        assert str(exc_info.value) == f"Rate limited on {ACCOUNT} after 3 attempts"

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self, make_session, make_client, sleep):
        """Test recovery after a single rate limit."""
        session = make_session((429, None, "Too Many Requests"), (200, {"ok": True}))
        client = make_client(session)

        result = await client.execute(ACCOUNT)

        assert result == {"ok": True}
        assert sleeps(sleep) == [2]
        summary = client.metrics.get_summary()
        assert summary["requests"]["total"] == 2
        assert summary["requests"]["failure"] == 1
        assert summary["errors"]["rate_limit_hits"] == 1

    @pytest.mark.asyncio
    async def test_no_response_backoff(self, make_session, make_client, sleep):
        """Test dropped connections back off by three seconds per attempt."""
        session = make_session(aiohttp.ServerDisconnectedError())
        client = make_client(session)

        with pytest.raises(NoResponseExhausted) as exc_info:
            await client.execute(ACCOUNT)

        assert len(session.calls) == 3
        assert sleeps(sleep) == [3, 6]
        assert "No response from server" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_is_network_failure(self, make_session, make_client, sleep):
        """Test timeouts are retried as network failures."""
        session = make_session(asyncio.TimeoutError())
        client = make_client(session)

        with pytest.raises(NetworkExhausted):
            await client.execute(TICKER, signed=False)

        assert sleeps(sleep) == [2, 4]
        assert client.metrics.get_summary()["errors"]["connection_errors"] == 3

    @pytest.mark.asyncio
    async def test_connection_refused_is_network_failure(self, make_session, make_client, sleep):
        """Test refused connections are retried as network failures."""
        refused = aiohttp.ClientConnectorError(
            MagicMock(host="api.binance.com", port=443, ssl=True),
            OSError(111, "Connection refused"),
        )
        session = make_session(refused)
        client = make_client(session)

        with pytest.raises(NetworkExhausted):
            await client.execute(ACCOUNT)

        assert len(session.calls) == 3
        assert sleeps(sleep) == [2, 4]

    @pytest.mark.asyncio
    async def test_unclassified_client_error_is_no_response(
        self, make_session, make_client, sleep
    ):
        """Test other aiohttp errors are retried as no-response failures."""
        malformed = aiohttp.ClientResponseError(
            MagicMock(), (), status=400, message="Invalid HTTP header"
        )
        session = make_session(malformed)
        client = make_client(session)

        with pytest.raises(NoResponseExhausted):
            await client.execute(TICKER, {"symbol": "BTCUSDT"}, signed=False)

        assert len(session.calls) == 3
        assert sleeps(sleep) == [3, 6]

    @pytest.mark.asyncio
    async def test_each_attempt_gets_fresh_timestamp(self, make_session, make_client):
        """Test every attempt is signed with a new timestamp."""
        session = make_session((429, None))
        timestamps = MagicMock(side_effect=[1000, 2000, 3000])
        client = make_client(session, timestamp_provider=timestamps)

        with pytest.raises(RateLimitExhausted):
            await client.execute(ACCOUNT)

        urls = [call["url"] for call in session.calls]
        assert "timestamp=1000&" in urls[0]
        assert "timestamp=2000&" in urls[1]
        assert "timestamp=3000&" in urls[2]
        assert len(set(urls)) == 3

    @pytest.mark.asyncio
    async def test_max_attempts_override(self, make_session, make_client, sleep):
        """Test the per-call attempt limit."""
        session = make_session((429, None))
        client = make_client(session)

        with pytest.raises(RateLimitExhausted) as exc_info:
            await client.execute(ACCOUNT, max_attempts=1)

        assert len(session.calls) == 1
        assert exc_info.value.attempts == 1
        sleep.assert_not_awaited()


# ============================================================
# REJECTION TESTS
# ============================================================

class TestRejection:
    """Tests for non-retried HTTP errors."""

    @pytest.mark.asyncio
    async def test_exchange_message_is_used(self, make_session, make_client, sleep):
        """Test the exchange's error message reaches the caller."""
        session = make_session((400, {"code": -1121, "msg": "Invalid symbol."}, "Bad Request"))
        client = make_client(session)

        with pytest.raises(ExchangeRejected) as exc_info:
            await client.execute(TICKER, {"symbol": "FOOUSDT"}, signed=False)

        error = exc_info.value
        assert str(error) == "API Error 400: Invalid symbol."
        assert error.http_status == 400
        assert error.exchange_code == -1121
        assert error.category == ErrorCategory.SYMBOL_NOT_FOUND
        assert error.code == "BINANCE_-1121"
        assert len(session.calls) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reason_used_without_message(self, make_session, make_client):
        """Test the HTTP reason is used when the body has no message."""
        session = make_session((500, "<html>oops</html>", "Internal Server Error"))
        client = make_client(session)

        with pytest.raises(ExchangeRejected) as exc_info:
            await client.execute(ACCOUNT)

        assert str(exc_info.value) == "API Error 500: Internal Server Error"
        assert exc_info.value.category == ErrorCategory.EXCHANGE_ERROR
        assert exc_info.value.code == "HTTP_500"

    @pytest.mark.asyncio
    async def test_authentication_failure(self, make_session, make_client):
        """Test invalid keys map to an authentication rejection."""
        session = make_session(
            (401, {"code": -2015, "msg": "Invalid API-key, IP, or permissions for action."})
        )
        client = make_client(session)

        with pytest.raises(ExchangeRejected) as exc_info:
            await client.execute(ACCOUNT)

        assert exc_info.value.category == ErrorCategory.AUTHENTICATION
        assert client.metrics.get_summary()["errors"]["rejected"] == 1


# ============================================================
# RETRY POLICY TESTS
# ============================================================

class TestRetryPolicy:
    """Tests for RetryPolicy in isolation."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, sleep):
        """Test no sleep when the first attempt succeeds."""
        policy = RetryPolicy(sleep=sleep)
        operation = AsyncMock(return_value="done")

        assert await policy.run(operation) == "done"
        operation.assert_awaited_once_with(1)
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backoff_follows_last_failure_class(self, sleep):
        """Test each delay follows the class of the failure before it."""
        policy = RetryPolicy(sleep=sleep)
        operation = AsyncMock(side_effect=[
            TransientFailure(FailureClass.NETWORK, "refused"),
            TransientFailure(FailureClass.NO_RESPONSE, "silent"),
            TransientFailure(FailureClass.NO_RESPONSE, "silent"),
        ])

        with pytest.raises(NoResponseExhausted) as exc_info:
            await policy.run(operation, description="/api/v3/time")

        assert sleeps(sleep) == [2, 6]
        assert exc_info.value.endpoint == "/api/v3/time"
        assert isinstance(exc_info.value.__cause__, TransientFailure)

    @pytest.mark.asyncio
    async def test_other_errors_propagate_immediately(self, sleep):
        """Test non-transient errors are not retried."""
        policy = RetryPolicy(sleep=sleep)
        operation = AsyncMock(side_effect=ValueError("boom"))

        with pytest.raises(ValueError, match="boom"):
            await policy.run(operation)

        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_attempts_is_configuration_error(self, sleep):
        """Test a zero attempt limit is refused."""
        policy = RetryPolicy(sleep=sleep)

        with pytest.raises(ConfigurationError):
            await policy.run(AsyncMock(), max_attempts=0)

    def test_custom_multipliers(self):
        """Test configured backoff multipliers."""
        policy = RetryPolicy(RetryConfig(max_attempts=5, rate_limit_backoff_seconds=0.5))

        assert policy.max_attempts == 5
        assert policy.delay_for(FailureClass.RATE_LIMIT, 3) == 1.5
        assert policy.delay_for(FailureClass.NO_RESPONSE, 2) == 6.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
