"""Tests for the token-bucket rate limiter."""

import pytest

from fno_engine.broker.rate_limiter import RateLimiters, TokenBucket


class ManualClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


class TestTokenBucket:
    def test_burst_then_refill(self):
        clock = ManualClock()
        bucket = TokenBucket(2.0, clock=clock)
        assert bucket.try_acquire()
        assert bucket.try_acquire()
        assert not bucket.try_acquire()
        clock.t = 0.5
        assert bucket.try_acquire()
        assert not bucket.try_acquire()

    def test_capacity_caps_refill(self):
        clock = ManualClock()
        bucket = TokenBucket(1.0, capacity=3.0, clock=clock)
        clock.t = 100.0
        assert bucket.available == 3.0

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            TokenBucket(0.0)

    @pytest.mark.asyncio
    async def test_acquire_waits(self):
        bucket = TokenBucket(50.0, capacity=1.0)
        await bucket.acquire()
        await bucket.acquire(poll_interval=0.005)
        assert bucket.available < 1.0

    @pytest.mark.asyncio
    async def test_acquire_more_than_capacity(self):
        with pytest.raises(ValueError):
            await TokenBucket(1.0).acquire(2)

    def test_defaults(self):
        limiters = RateLimiters()
        assert limiters.historical.name == "historical"
        assert limiters.orders.available == 10.0
