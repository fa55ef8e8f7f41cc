"""Tests for the indicator kit."""

import time
from datetime import timedelta

import numpy as np
import pytest

from fno_engine.core.data_types import Bar
from fno_engine.strategy import indicators

from conftest import ist, make_bar, zigzag_downtrend, zigzag_uptrend

T0 = ist(2025, 1, 6, 9)
HOUR = timedelta(hours=1)


def closes(values, spread=1.0):
    return [make_bar(T0 + HOUR * i, v, spread=spread) for i, v in enumerate(values)]


class TestWilderSmooth:
    def test_seeded_with_simple_average(self):
        out = indicators.wilder_smooth(np.array([1.0, 2.0, 3.0, 4.0]), 2)
        np.testing.assert_allclose(out, [1.5, 2.25, 3.125])

    def test_too_short(self):
        assert indicators.wilder_smooth(np.array([1.0]), 2) is None


class TestAdx:
    def test_needs_period_plus_one_bars(self):
        bars = zigzag_uptrend(14, T0, HOUR)
        assert indicators.adx(bars, 14) is None
        assert indicators.adx(zigzag_uptrend(15, T0, HOUR), 14) is not None

    def test_uptrend(self):
        reading = indicators.adx(zigzag_uptrend(40, T0, HOUR), 14)
        assert reading.adx == pytest.approx(100.0)
        assert reading.plus_di > reading.minus_di
        assert reading.minus_di == 0.0

    def test_downtrend(self):
        reading = indicators.adx(zigzag_downtrend(40, T0, HOUR), 14)
        assert reading.adx == pytest.approx(100.0)
        assert reading.minus_di > reading.plus_di

    def test_flat_market_has_no_trend(self):
        reading = indicators.adx(closes([100.0] * 30), 14)
        assert reading.adx == 0.0
        assert reading.plus_di == reading.minus_di == 0.0

    def test_zero_range_returns_none(self):
        bars = [Bar(T0 + HOUR * i, 100.0, 100.0, 100.0, 100.0, 0) for i in range(20)]
        assert indicators.adx(bars, 14) is None

    @pytest.mark.benchmark
    def test_adx_latency(self):
        """One hourly-lookback ADX evaluation per cycle must be cheap."""
        bars = zigzag_uptrend(60, T0, HOUR)
        iterations = 200
        start = time.perf_counter_ns()
        for _ in range(iterations):
            indicators.adx(bars, 14)
        avg_ms = (time.perf_counter_ns() - start) / iterations / 1e6
        assert avg_ms < 20, f"ADX too slow: {avg_ms:.2f} ms"


class TestOscillators:
    def test_rsi_without_losses(self):
        assert indicators.rsi(closes([100.0 + i for i in range(20)]), 14) == 100.0
        assert indicators.rsi(closes([100.0] * 20), 14) == 100.0

    def test_rsi_without_gains(self):
        assert indicators.rsi(closes([200.0 - i for i in range(20)]), 14) == pytest.approx(0.0)

    def test_rsi_of_zigzag(self):
        up = indicators.rsi(zigzag_uptrend(40, T0, HOUR), 14)
        down = indicators.rsi(zigzag_downtrend(40, T0, HOUR), 14)
        assert 55.0 < up < 70.0
        assert 30.0 < down < 45.0

    def test_rsi_too_short(self):
        assert indicators.rsi(closes([100.0] * 14), 14) is None

    def test_ema_of_constant(self):
        assert indicators.ema(closes([50.0] * 30), 20) == pytest.approx(50.0)

    def test_ema_seed_and_step(self):
        # seed = mean(1, 2, 3) = 2; k = 0.5; next = (4 - 2) * 0.5 + 2
        assert indicators.ema(closes([1.0, 2.0, 3.0, 4.0]), 3) == pytest.approx(3.0)

    def test_ema_too_short(self):
        assert indicators.ema(closes([1.0, 2.0]), 3) is None

    def test_sma(self):
        assert indicators.sma(closes([1.0, 2.0, 3.0, 4.0]), 2) == pytest.approx(3.5)


class TestVolumeAndRange:
    def test_vwap(self):
        bars = [
            Bar(T0, 10.0, 12.0, 9.0, 12.0, 100),        # typical 11
            Bar(T0 + HOUR, 12.0, 15.0, 12.0, 15.0, 300),  # typical 14
        ]
        assert indicators.vwap(bars) == pytest.approx((11 * 100 + 14 * 300) / 400)

    def test_vwap_zero_volume(self):
        assert indicators.vwap([Bar(T0, 1.0, 1.0, 1.0, 1.0, 0)]) is None
        assert indicators.vwap([]) is None

    def test_atr_constant_range(self):
        assert indicators.atr(closes([100.0] * 20, spread=1.0), 14) == pytest.approx(2.0)


class TestStrikes:
    def test_round_to_strike_floors(self):
        assert indicators.round_to_strike(20037.0, 50) == 20000.0
        assert indicators.round_to_strike(20037.0, 0) is None

    def test_atm_strike(self):
        assert indicators.atm_strike(20024.0, 50) == 20000.0
        assert indicators.atm_strike(20025.0, 50) == 20050.0
        assert indicators.atm_strike(48260.0, 100) == 48300.0
        assert indicators.atm_strike(100.0, -1) is None

    def test_percentage_change(self):
        assert indicators.percentage_change(100.0, 110.0) == pytest.approx(10.0)
        assert indicators.percentage_change(0.0, 5.0) is None
