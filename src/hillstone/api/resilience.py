#!/usr/bin/env python3
"""Retry with backoff for firewall API calls.

Transient failures (transport errors, 5xx, 429) are retried a bounded
number of times. Authentication failures are never retried here: the
client handles 401/403 with its own single re-login cycle.

Example:
    policy = RetryPolicy.from_settings(settings)
    objects = await retry_async(client._get_json, "/api/address-book/objects", policy=policy)

Author: Hillstone Sync Team
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import NetworkError, RateLimitError, ServerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_EXCEPTIONS = (
    NetworkError,
    RateLimitError,
    ServerError,
)


@dataclass
class RetryPolicy:
    """Bounded retry schedule.

    Attributes:
        max_attempts: Total attempts including the first
        delay: Base delay in seconds
        multiplier: Growth factor per attempt for the exponential strategy
        max_delay: Cap applied to every computed or server-provided delay
        strategy: "exponential" or "linear"
    """

    max_attempts: int = 3
    delay: float = 5.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    strategy: str = "exponential"

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.sync.retry_attempts,
            delay=settings.sync.retry_delay,
            multiplier=settings.sync.retry_multiplier,
            max_delay=settings.sync.max_retry_delay,
            strategy=settings.rate_limiting.backoff_strategy.value,
        )

    def backoff(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt."""
        wait = self.delay * (self.multiplier ** (attempt - 1))
        return min(wait, self.max_delay)

    def rate_limit_backoff(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay after a 429.

        A server-supplied hint wins; otherwise the configured strategy
        decides. The exponent is capped at 5 so a long run of 429s cannot
        overflow before the max_delay cap applies.
        """
        if retry_after is not None and retry_after >= 0:
            return min(float(retry_after), self.max_delay)
        if self.strategy == "linear":
            return min(self.delay * attempt, self.max_delay)
        return min(self.delay * (self.multiplier ** min(attempt, 5)), self.max_delay)

    def delay_for(self, error: Exception, attempt: int) -> float:
        if isinstance(error, RateLimitError):
            return self.rate_limit_backoff(attempt, error.retry_after)
        return self.backoff(attempt)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    policy: Optional[RetryPolicy] = None,
    retryable_exceptions: tuple = DEFAULT_RETRYABLE_EXCEPTIONS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs,
) -> T:
    """Call func, retrying transient failures according to policy.

    Non-retryable exceptions propagate on the first occurrence. When every
    attempt fails the last error propagates unchanged.

    Example:
        result = await retry_async(client._get_json, url, policy=RetryPolicy(max_attempts=5))
    """
    policy = policy or RetryPolicy()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except retryable_exceptions as e:
            if attempt >= policy.max_attempts:
                logger.error(f"All {policy.max_attempts} attempts failed. Last error: {e}")
                raise

            wait = policy.delay_for(e, attempt)
            logger.warning(
                f"Attempt {attempt}/{policy.max_attempts} failed: {e}. "
                f"Retrying in {wait:.1f}s"
            )
            await sleep(wait)

    raise RuntimeError("Retry logic error")
