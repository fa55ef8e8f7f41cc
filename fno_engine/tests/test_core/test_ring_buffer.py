"""Tests for the NumPy tick ring buffer."""

import math
import time

import numpy as np
import pytest

from fno_engine.core.ring_buffer import TICK_DTYPE, RingBuffer


class TestRingBuffer:
    def test_empty(self):
        rb = RingBuffer(capacity=5)
        assert rb.count == 0
        assert rb.latest() is None
        assert len(rb.last_n(3)) == 0
        assert rb.to_array().dtype == TICK_DTYPE

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            RingBuffer(capacity=0)

    def test_push_and_latest(self):
        rb = RingBuffer(capacity=5)
        rb.push(1_000, 100.0, volume=10)
        rb.push(2_000, 101.5, volume=5, bid=101.45, ask=101.55)
        latest = rb.latest()
        assert latest["price"] == 101.5
        assert latest["bid"] == pytest.approx(101.45)
        assert rb.count == 2

    def test_missing_quotes_are_nan(self):
        rb = RingBuffer(capacity=2)
        rb.push(1, 100.0)
        assert math.isnan(rb.latest()["bid"])
        assert math.isnan(rb.latest()["ask"])

    def test_wraparound_keeps_newest_in_order(self):
        rb = RingBuffer(capacity=3)
        for i in range(5):
            rb.push(i, float(i))
        assert rb.count == 3
        np.testing.assert_array_equal(rb.to_array()["price"], [2.0, 3.0, 4.0])
        np.testing.assert_array_equal(rb.last_n(2)["timestamp_ns"], [3, 4])

    def test_window_ns(self):
        rb = RingBuffer(capacity=10)
        for ts in (0, 500, 900, 1000):
            rb.push(ts, 1.0)
        window = rb.window_ns(500)
        np.testing.assert_array_equal(window["timestamp_ns"], [500, 900, 1000])

    def test_reads_are_copies(self):
        rb = RingBuffer(capacity=3)
        rb.push(1, 100.0)
        data = rb.last_n(1)
        data["price"][0] = -1.0
        assert rb.latest()["price"] == 100.0

    def test_clear(self):
        rb = RingBuffer(capacity=3)
        rb.push(1, 100.0)
        rb.clear()
        assert rb.count == 0
        assert rb.latest() is None

    @pytest.mark.benchmark
    def test_push_latency(self):
        """Push must stay in the low microseconds."""
        rb = RingBuffer(capacity=100_000)
        iterations = 50_000
        start = time.perf_counter_ns()
        for i in range(iterations):
            rb.push(1_000_000 + i, 20000.0, volume=1)
        avg_us = (time.perf_counter_ns() - start) / iterations / 1000
        assert avg_us < 50, f"Push too slow: {avg_us:.2f} us"
