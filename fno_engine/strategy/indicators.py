"""Indicator kit — pure functions over completed bars (oldest → newest).

Every function returns None when the input is too short or a division by zero
would occur. Wilder smoothing is seeded with the simple average of the first
``period`` values:

    smoothed_t = ((period - 1) * smoothed_{t-1} + value_t) / period
"""

from __future__ import annotations

import math
from typing import NamedTuple, Sequence

import numpy as np

from fno_engine.core.data_types import Bar


class AdxReading(NamedTuple):
    adx: float
    plus_di: float
    minus_di: float


def _column(bars: Sequence[Bar], name: str) -> np.ndarray:
    return np.fromiter((getattr(b, name) for b in bars), dtype=np.float64, count=len(bars))


def wilder_smooth(values: np.ndarray, period: int) -> np.ndarray | None:
    """Wilder-smoothed series; element 0 corresponds to values[period - 1]."""
    if period < 1 or len(values) < period:
        return None
    out = np.empty(len(values) - period + 1, dtype=np.float64)
    out[0] = values[:period].mean()
    for i in range(period, len(values)):
        out[i - period + 1] = ((period - 1) * out[i - period] + values[i]) / period
    return out


def true_range(bars: Sequence[Bar]) -> np.ndarray:
    """Per-step TR = max(H−L, |H−Cprev|, |L−Cprev|); one value per bar after the first."""
    high = _column(bars, "high")
    low = _column(bars, "low")
    close = _column(bars, "close")
    prev_close = close[:-1]
    return np.maximum.reduce([
        high[1:] - low[1:],
        np.abs(high[1:] - prev_close),
        np.abs(low[1:] - prev_close),
    ])


def adx(bars: Sequence[Bar], period: int = 14) -> AdxReading | None:
    """Wilder ADX with +DI/−DI. Requires at least ``period + 1`` bars.

    ADX is DX smoothed over ``period``; with fewer than ``period`` DX values the
    seed is the mean of those available.
    """
    if period < 1 or len(bars) < period + 1:
        return None

    high = _column(bars, "high")
    low = _column(bars, "low")
    up_move = high[1:] - high[:-1]
    down_move = low[:-1] - low[1:]
    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)

    s_tr = wilder_smooth(true_range(bars), period)
    s_plus = wilder_smooth(plus_dm, period)
    s_minus = wilder_smooth(minus_dm, period)
    if s_tr[-1] == 0:
        return None

    with np.errstate(divide="ignore", invalid="ignore"):
        plus_di = np.where(s_tr > 0, 100.0 * s_plus / s_tr, 0.0)
        minus_di = np.where(s_tr > 0, 100.0 * s_minus / s_tr, 0.0)
        di_sum = plus_di + minus_di
        dx = np.where(di_sum > 0, 100.0 * np.abs(plus_di - minus_di) / di_sum, 0.0)

    seed = min(period, len(dx))
    value = float(dx[:seed].mean())
    for d in dx[seed:]:
        value = ((period - 1) * value + float(d)) / period

    return AdxReading(adx=value, plus_di=float(plus_di[-1]), minus_di=float(minus_di[-1]))


def rsi(bars: Sequence[Bar], period: int = 14) -> float | None:
    """Wilder RSI. A series without losses (including a flat one) returns 100."""
    if period < 1 or len(bars) < period + 1:
        return None
    changes = np.diff(_column(bars, "close"))
    avg_gain = wilder_smooth(np.where(changes > 0, changes, 0.0), period)[-1]
    avg_loss = wilder_smooth(np.where(changes < 0, -changes, 0.0), period)[-1]
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100.0 - 100.0 / (1.0 + rs))


def ema(bars: Sequence[Bar], period: int) -> float | None:
    """SMA-seeded EMA of closes with multiplier 2 / (period + 1)."""
    if period < 1 or len(bars) < period:
        return None
    closes = _column(bars, "close")
    k = 2.0 / (period + 1)
    value = float(closes[:period].mean())
    for c in closes[period:]:
        value = (float(c) - value) * k + value
    return value


def sma(bars: Sequence[Bar], period: int) -> float | None:
    if period < 1 or len(bars) < period:
        return None
    return float(_column(bars[-period:], "close").mean())


def vwap(bars: Sequence[Bar]) -> float | None:
    """Volume-weighted typical price. None on zero total volume."""
    if not bars:
        return None
    typical = (_column(bars, "high") + _column(bars, "low") + _column(bars, "close")) / 3.0
    volume = _column(bars, "volume")
    total = volume.sum()
    if total == 0:
        return None
    return float((typical * volume).sum() / total)


def atr(bars: Sequence[Bar], period: int = 14) -> float | None:
    """Wilder-smoothed true range."""
    if period < 1 or len(bars) < period + 1:
        return None
    return float(wilder_smooth(true_range(bars), period)[-1])


def round_to_strike(price: float, increment: float) -> float | None:
    """Floor to a multiple of ``increment`` (negative prices floor away from zero)."""
    if increment <= 0:
        return None
    return math.floor(price / increment) * increment


def percentage_change(old: float, new: float) -> float | None:
    if old == 0:
        return None
    return (new - old) / old * 100.0


def atm_strike(price: float, increment: float) -> float | None:
    """Strike closest to ``price``; halfway values round up."""
    if increment <= 0:
        return None
    return math.floor(price / increment + 0.5) * increment
