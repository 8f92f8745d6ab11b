"""
Shared fixtures for exchange portfolio tests.

The fake session mimics the slice of aiohttp.ClientSession the
client uses: ``request()`` returning an async context manager with
``status``, ``reason`` and ``text()``.
"""

import json
from typing import Any, List
from unittest.mock import AsyncMock

import pytest

from exchange_portfolio.client import SignedRequestClient
from exchange_portfolio.config import ExchangeCredentials, PortfolioEngineConfig


FIXED_TIMESTAMP = 1700000000000


# ============================================================
# FAKE HTTP LAYER
# ============================================================

class FakeResponse:
    """Canned HTTP response."""

    def __init__(self, status: int = 200, body: Any = None, reason: str = "OK"):
        self.status = status
        self.reason = reason
        if body is None:
            self._text = ""
        elif isinstance(body, str):
            self._text = body
        else:
            self._text = json.dumps(body)

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeSession:
    """
    Scripted session.

    Each request consumes the next outcome; the last one repeats.
    An outcome is either an exception to raise or a FakeResponse.
    """

    def __init__(self, outcomes: List[Any]):
        self._outcomes = list(outcomes)
        self.calls: List[dict] = []
        self.closed = False

    def request(self, method, url, data=None, headers=None):
        self.calls.append({
            "method": method,
            "url": url,
            "data": data,
            "headers": dict(headers or {}),
        })
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.closed = True


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def make_session():
    """Build a FakeSession from exceptions or (status, body[, reason]) tuples."""
    def factory(*outcomes) -> FakeSession:
        prepared = []
        for outcome in outcomes:
            if isinstance(outcome, tuple):
                outcome = FakeResponse(*outcome)
            prepared.append(outcome)
        return FakeSession(prepared)
    return factory


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def config():
    return PortfolioEngineConfig.for_testing()


@pytest.fixture
def make_client(config, sleep):
    """Build a SignedRequestClient over a fake session."""
    def factory(session, credentials=None, exchange_config=None, **kwargs) -> SignedRequestClient:
        kwargs.setdefault("timestamp_provider", lambda offset: FIXED_TIMESTAMP + offset)
        return SignedRequestClient(
            credentials=credentials if credentials is not None else config.credentials,
            exchange_config=exchange_config or config.exchange,
            retry_config=config.retry,
            timeout_config=config.timeout,
            session=session,
            sleep=sleep,
            **kwargs,
        )
    return factory


@pytest.fixture
def no_credentials():
    return ExchangeCredentials()
