"""Token-bucket rate limiter for upstream requests.

Capacity is the burst size and tokens refill continuously at
``requests_per_minute / 60`` per second. :meth:`TokenBucket.acquire` never
rejects a caller; it suspends until a whole token is available.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Poll interval used when the refill rate is zero and the bucket is empty.
_IDLE_WAIT_SECONDS = 60.0


class TokenBucket:
    def __init__(
        self,
        requests_per_minute: float,
        burst_size: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if requests_per_minute < 0:
            msg = f"requests_per_minute must be >= 0, got {requests_per_minute}"
            raise ValueError(msg)
        if burst_size < 1:
            msg = f"burst_size must be >= 1, got {burst_size}"
            raise ValueError(msg)
        self.capacity = float(burst_size)
        self.refill_per_second = requests_per_minute / 60.0
        self._clock = clock
        self._tokens = self.capacity
        self._updated = clock()
        # asyncio.Lock wakes waiters in FIFO order.
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
        self._updated = now

    @property
    def available(self) -> float:
        """Tokens the bucket would hold now. Does not modify the bucket."""
        elapsed = max(0.0, self._clock() - self._updated)
        return min(self.capacity, self._tokens + elapsed * self.refill_per_second)

    async def acquire(self) -> None:
        """Take one token, waiting as long as needed."""
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                if self.refill_per_second > 0:
                    wait = (1 - self._tokens) / self.refill_per_second
                else:
                    wait = _IDLE_WAIT_SECONDS
                logger.debug("Rate limit reached, waiting %.3fs for a token", wait)
                await asyncio.sleep(wait)
