"""Client-side rate limiting for firewall API calls.

A token bucket sized by burst_limit and refilled at requests_per_minute.
Callers over the limit are delayed until a token is available, never
rejected.

Example:
    limiter = TokenBucketRateLimiter(requests_per_minute=60, burst_limit=10)
    await limiter.acquire()   # returns immediately while the bucket has tokens
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class TokenBucketRateLimiter:
    """Asyncio-safe token bucket.

    Each acquire() takes one token. When the bucket is empty the caller
    reserves the next token (the balance goes negative) and sleeps until it
    would have been refilled, so concurrent waiters are served in order.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        burst_limit: int = 10,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.requests_per_minute = max(1, requests_per_minute)
        self.burst_limit = max(1, burst_limit)
        self.enabled = enabled
        self._clock = clock
        self._sleep = sleep
        self._rate = self.requests_per_minute / 60.0
        self._tokens = float(self.burst_limit)
        self._updated_at = clock()
        self._lock = asyncio.Lock()
        self.total_delayed = 0

    @classmethod
    def from_settings(cls, settings) -> "TokenBucketRateLimiter":
        rl = settings.rate_limiting
        return cls(
            requests_per_minute=rl.requests_per_minute,
            burst_limit=rl.burst_limit,
            enabled=rl.enabled,
        )

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(float(self.burst_limit), self._tokens + elapsed * self._rate)
        self._updated_at = now

    async def acquire(self) -> float:
        """Take one token, sleeping if necessary.

        Returns:
            Seconds spent waiting (0.0 when a token was immediately available).
        """
        if not self.enabled:
            return 0.0

        async with self._lock:
            self._refill()
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            wait = -self._tokens / self._rate
            self.total_delayed += 1

        logger.info(f"Rate limit reached, delaying request {wait:.2f}s")
        await self._sleep(wait)
        return wait

    @property
    def available_tokens(self) -> float:
        self._refill()
        return max(0.0, self._tokens)

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "requests_per_minute": self.requests_per_minute,
            "burst_limit": self.burst_limit,
            "available_tokens": round(self.available_tokens, 2),
            "total_delayed": self.total_delayed,
        }
