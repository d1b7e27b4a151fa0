"""
Rate-Limited Provider Client

Single wrapper through which every provider call of a run goes. It owns the
run's shared request budget:

    - sleeps the inter-request delay before EVERY attempt, first one included
    - retries transient failures with a fixed or exponential backoff
    - never retries quota, not-found or malformed failures
    - logs one event per attempt (success, retry, giveup) and keeps counters

Both sleeps are the run's only suspension points, so cancelling the task
that drives a run interrupts it here.

Usage:
    client = RateLimitedClient(max_retries=3, retry_delay=5.0)
    results = await client.fetch(
        lambda: provider.search("Tortuga Malta"),
        description="search 'Tortuga'",
    )

Author: Khalil_Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from reconciler.core.config import RetryBackoff
from reconciler.core.exceptions import (
    ProviderQuotaExceededError,
    ProviderTransientError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class ClientStats:
    """Attempt counters; the only state the client mutates."""
    requests: int = 0
    attempts: int = 0
    successes: int = 0
    retries: int = 0
    giveups: int = 0
    quota_errors: int = 0

    def to_dict(self) -> dict:
        return {
            "requests": self.requests,
            "attempts": self.attempts,
            "successes": self.successes,
            "retries": self.retries,
            "giveups": self.giveups,
            "quota_errors": self.quota_errors,
        }


class RateLimitedClient:
    """
    Delay/retry/backoff wrapper around provider coroutines.

    Attributes:
        max_retries: Total attempts for a transient failure (3 = 1 + 2 retries)
        retry_delay: Seconds between attempts (base delay when exponential)
        backoff: RetryBackoff.FIXED or RetryBackoff.EXPONENTIAL
        inter_request_delay: Seconds slept before every attempt
        stats: Attempt counters
    """

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 5.0,
        backoff: RetryBackoff = RetryBackoff.FIXED,
        inter_request_delay: float = 0.2,
        max_retry_delay: float = 60.0,
        sleep: Optional[SleepFunc] = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.backoff = backoff
        self.inter_request_delay = inter_request_delay
        self.max_retry_delay = max_retry_delay
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self.stats = ClientStats()

    @classmethod
    def from_run_config(cls, config, sleep: Optional[SleepFunc] = None) -> "RateLimitedClient":
        return cls(
            max_retries=config.max_retries,
            retry_delay=config.retry_delay_seconds,
            backoff=config.retry_backoff,
            inter_request_delay=config.inter_request_delay_seconds,
            max_retry_delay=config.max_retry_delay_seconds,
            sleep=sleep,
        )

    def _wait_strategy(self):
        if self.backoff == RetryBackoff.EXPONENTIAL:
            return wait_exponential(
                multiplier=self.retry_delay,
                min=self.retry_delay,
                max=self.max_retry_delay,
            )
        return wait_fixed(self.retry_delay)

    async def sleep(self, seconds: float) -> None:
        """Sleep with the client's sleep function (used for batch pauses)."""
        if seconds > 0:
            await self._sleep(seconds)

    async def fetch(
        self,
        request: Callable[[], Awaitable[T]],
        description: str = "provider request",
    ) -> T:
        """
        Execute a provider request under the rate limit and retry policy.

        Args:
            request: Zero-argument callable returning a fresh coroutine
            description: Label used in log events

        Returns:
            Whatever the request returns

        Raises:
            ProviderTransientError: After the last attempt failed transiently
            ProviderQuotaExceededError: Immediately, without retrying
            ProviderError: Any other provider failure, immediately
        """
        self.stats.requests += 1

        def log_retry(retry_state: RetryCallState) -> None:
            self.stats.retries += 1
            error = retry_state.outcome.exception() if retry_state.outcome else None
            wait = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"↻ {description}: attempt {retry_state.attempt_number}/"
                f"{self.max_retries} failed ({error}); retrying in {wait:.1f}s"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=self._wait_strategy(),
            retry=retry_if_exception_type(ProviderTransientError),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self.sleep(self.inter_request_delay)
                    self.stats.attempts += 1
                    result = await request()
        except ProviderTransientError as e:
            self.stats.giveups += 1
            logger.error(f"✗ {description}: giving up after {self.max_retries} attempts ({e})")
            raise
        except ProviderQuotaExceededError as e:
            self.stats.quota_errors += 1
            logger.error(f"✗ {description}: quota exceeded ({e})")
            raise

        self.stats.successes += 1
        logger.debug(f"✓ {description}: ok after {attempt.retry_state.attempt_number} attempt(s)")
        return result
