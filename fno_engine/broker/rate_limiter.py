"""Token-bucket rate limiting for broker API classes (orders, market data, historical)."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """Refills ``rate_per_sec`` tokens per second up to ``capacity``."""

    def __init__(
        self,
        rate_per_sec: float,
        capacity: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "",
    ) -> None:
        if rate_per_sec <= 0:
            raise ValueError("rate_per_sec must be positive")
        self._rate = rate_per_sec
        self._capacity = capacity if capacity is not None else rate_per_sec
        self._tokens = self._capacity
        self._clock = clock
        self._last_refill = clock()
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def try_acquire(self, n: float = 1) -> bool:
        self._refill()
        if self._tokens >= n:
            self._tokens -= n
            return True
        return False

    async def acquire(self, n: float = 1, poll_interval: float = 0.1) -> None:
        """Wait until n tokens are available, polling every ``poll_interval`` seconds."""
        if n > self._capacity:
            raise ValueError(f"cannot acquire {n} tokens from a bucket of {self._capacity}")
        waited = False
        while not self.try_acquire(n):
            if not waited:
                logger.debug("Rate limit reached for %s, waiting", self._name or "bucket")
                waited = True
            await asyncio.sleep(poll_interval)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
            self._last_refill = now


class RateLimiters:
    """Per-class buckets enforced by callers before each broker request."""

    def __init__(
        self,
        orders_per_sec: float = 10.0,
        market_data_per_sec: float = 10.0,
        historical_per_sec: float = 3.0,
    ) -> None:
        self.orders = TokenBucket(orders_per_sec, name="orders")
        self.market_data = TokenBucket(market_data_per_sec, name="market_data")
        self.historical = TokenBucket(historical_per_sec, name="historical")
