"""Async rate limiting for embedding and LLM API calls."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class AsyncRateLimiter:
    """Token-bucket limiter combined with a concurrency semaphore.

    ``rate`` tokens are refilled per second up to ``burst``; each request
    consumes one token and holds one of ``max_concurrency`` slots while it
    runs. A ``rate`` of 0 disables the bucket and keeps only the semaphore.

    Args:
        rate: Sustained requests per second allowed by the provider quota.
        burst: Bucket capacity (requests that may start back-to-back).
        max_concurrency: Maximum requests in flight at once.
        clock: Monotonic clock, injectable for tests.
        sleep: Coroutine used to wait for refill, injectable for tests.
    """

    def __init__(
        self,
        rate: float,
        burst: int = 1,
        max_concurrency: int = 4,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_concurrency < 1:
            msg = f"max_concurrency must be >= 1, got {max_concurrency}"
            raise ValueError(msg)
        self.rate = rate
        self.burst = max(1, burst)
        self._tokens = float(self.burst)
        self._clock = clock
        self._sleep = sleep
        self._updated_at = clock()
        self._lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max_concurrency)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated_at
        self._updated_at = now
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)

    async def acquire_token(self) -> None:
        """Wait until the bucket holds a token, then consume it."""
        if self.rate <= 0:
            return
        async with self._lock:
            self._refill()
            while self._tokens < 1:
                wait = (1 - self._tokens) / self.rate
                logger.debug("Rate limit reached, waiting %.3fs", wait)
                await self._sleep(wait)
                self._refill()
            self._tokens -= 1

    @asynccontextmanager
    async def limit(self) -> AsyncIterator[None]:
        """Context manager guarding a single API request."""
        async with self._semaphore:
            await self.acquire_token()
            yield
