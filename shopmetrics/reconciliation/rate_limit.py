"""
Token bucket rate limiter for upstream page requests.

With the defaults (10 requests/s, burst 1) consecutive pages are spaced at
least 100 ms apart. Clock and sleep are injectable for tests.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable


@dataclass
class RateLimiter:
    """
    Token bucket rate limiter.

    Args:
        rate: Requests per second
        burst: Maximum burst size
    """
    rate: float = 10.0
    burst: int = 1
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    tokens: float = field(default=0, init=False)
    last_update: float = field(default=0, init=False)

    def __post_init__(self):
        if self.rate <= 0:
            raise ValueError("rate must be positive")
        if self.burst < 1:
            raise ValueError("burst must be at least 1")
        self.tokens = float(self.burst)
        self.last_update = self.clock()
        self._lock = asyncio.Lock()

    def _replenish(self) -> None:
        now = self.clock()
        elapsed = now - self.last_update
        self.tokens = min(float(self.burst), self.tokens + elapsed * self.rate)
        self.last_update = now

    async def acquire(self) -> float:
        """
        Take one token, sleeping until one is available.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        async with self._lock:
            while True:
                self._replenish()
                if self.tokens >= 1:
                    self.tokens -= 1
                    return waited
                wait_time = (1 - self.tokens) / self.rate
                await self.sleep(wait_time)
                waited += wait_time
