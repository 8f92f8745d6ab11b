"""
Exchange Client - Retry Policy.

============================================================
PURPOSE
============================================================
One retry policy for every transient failure class:

    RATE_LIMIT   (HTTP 429)              wait attempt x 2s
    NETWORK      (refused/timeout/DNS)   wait attempt x 2s
    NO_RESPONSE  (sent, never answered)  wait attempt x 3s

Each attempt is a fresh call of the operation, so timestamp-bound
requests are rebuilt rather than replayed. Any other exception
propagates immediately.

============================================================
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..config import RetryConfig
from ..errors import (
    ConfigurationError,
    FailureClass,
    TransientFailure,
    exhaustion_error,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Bounded linear backoff keyed by failure class.

    The wait before attempt ``n + 1`` is ``n x multiplier`` where the
    multiplier depends on the class of the failure that ended attempt
    ``n``. No wait follows the final attempt.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize retry policy.

        Args:
            config: Retry configuration
            sleep: Awaitable sleep, injectable for tests
        """
        self._config = config or RetryConfig()
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def delay_for(self, failure_class: FailureClass, attempt: int) -> float:
        """Seconds to wait after ``attempt`` failed with ``failure_class``."""
        return attempt * self._config.backoff_for(failure_class)

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        max_attempts: Optional[int] = None,
        description: str = "request",
    ) -> T:
        """
        Run ``operation`` until it succeeds or attempts run out.

        Args:
            operation: Called with the 1-based attempt number
            max_attempts: Override of the configured attempt count
            description: Label used in logs and terminal errors

        Returns:
            Result of the first successful attempt

        Raises:
            RateLimitExhausted, NetworkExhausted, NoResponseExhausted:
                When every attempt failed transiently
        """
        attempts = max_attempts if max_attempts is not None else self._config.max_attempts
        if attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {attempts}")

        last_failure: Optional[TransientFailure] = None

        for attempt in range(1, attempts + 1):
            try:
                return await operation(attempt)
            except TransientFailure as failure:
                last_failure = failure

                if attempt >= attempts:
                    break

                delay = self.delay_for(failure.failure_class, attempt)
                logger.warning(
                    f"{description}: {failure.failure_class.value} "
                    f"({failure.message}), retrying in {delay:g}s "
                    f"(attempt {attempt}/{attempts})"
                )
                await self._sleep(delay)

        error = exhaustion_error(last_failure, attempts, endpoint=description)
        logger.error(f"{error} [{type(error).__name__}]")
        raise error from last_failure
