"""Hourly Crossover Monitor — +DI/−DI crossovers on hourly bars across underlyings.

A crossover is reported only when hourly ADX is at or above the threshold and the
crossing direction matches the underlying's daily bias. The first reading for an
underlying only seeds its state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from fno_engine.core.errors import MissingData
from fno_engine.core.types import Bias
from fno_engine.data.bar_store import BarStore
from fno_engine.strategy import indicators
from fno_engine.strategy.indicators import AdxReading

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrossoverSignal:
    underlying: str
    spot_token: str
    timestamp: datetime
    direction: Bias
    adx: float
    plus_di: float
    minus_di: float
    close_price: float
    aligned_with_daily: bool = True

    def to_dict(self) -> dict:
        return {
            "underlying": self.underlying,
            "spot_token": self.spot_token,
            "timestamp": self.timestamp.isoformat(),
            "direction": self.direction.value,
            "adx": self.adx,
            "plus_di": self.plus_di,
            "minus_di": self.minus_di,
            "close_price": self.close_price,
            "aligned_with_daily": self.aligned_with_daily,
        }


def detect_crossover(
    prev_plus_di: float, prev_minus_di: float, plus_di: float, minus_di: float
) -> Bias | None:
    if prev_plus_di <= prev_minus_di and plus_di > minus_di:
        return Bias.CALL
    if prev_minus_di <= prev_plus_di and minus_di > plus_di:
        return Bias.PUT
    return None


class HourlyCrossoverMonitor:
    def __init__(self, adx_period: int = 14, adx_threshold: float = 25.0) -> None:
        self._period = adx_period
        self._threshold = adx_threshold
        self._stores: dict[str, tuple[str, BarStore]] = {}
        self._last: dict[str, AdxReading] = {}

    @property
    def tokens(self) -> list[str]:
        return list(self._stores)

    def register(self, underlying: str, spot_token: str, store: BarStore) -> None:
        self._stores[spot_token] = (underlying, store)
        logger.info("Registered %s (%s) for hourly crossover monitoring", underlying, spot_token)

    def current_indicators(self, spot_token: str) -> AdxReading | None:
        _, store = self._store(spot_token)
        return indicators.adx(store.recent(self._period + 10), self._period)

    def check(self, spot_token: str, daily_bias: Bias) -> CrossoverSignal | None:
        underlying, store = self._store(spot_token)
        bars = store.recent(self._period + 10)
        if len(bars) < self._period + 2:
            logger.warning("%s: not enough hourly bars (%d < %d)",
                           underlying, len(bars), self._period + 2)
            return None
        reading = indicators.adx(bars, self._period)
        if reading is None or reading.adx < self._threshold:
            return None

        prev = self._last.get(spot_token)
        self._last[spot_token] = reading
        if prev is None:
            return None
        direction = detect_crossover(prev.plus_di, prev.minus_di, reading.plus_di, reading.minus_di)
        if direction is None:
            return None
        if direction is not daily_bias:
            logger.info("%s: hourly %s crossover against daily bias %s",
                        underlying, direction.value, daily_bias.value)
            return None

        last = bars[-1]
        logger.info(
            "Crossover %s %s @ %s: ADX %.2f +DI %.2f -DI %.2f close %.2f",
            underlying, direction.value, last.timestamp.isoformat(),
            reading.adx, reading.plus_di, reading.minus_di, last.close,
        )
        return CrossoverSignal(
            underlying=underlying,
            spot_token=spot_token,
            timestamp=last.timestamp,
            direction=direction,
            adx=reading.adx,
            plus_di=reading.plus_di,
            minus_di=reading.minus_di,
            close_price=last.close,
        )

    def check_all(self, daily_biases: Mapping[str, Bias]) -> list[CrossoverSignal]:
        """Check every registered token that has a daily bias (keyed by spot token)."""
        signals = []
        for spot_token in self._stores:
            bias = daily_biases.get(spot_token)
            if bias is None or bias is Bias.NO_TRADE:
                continue
            signal = self.check(spot_token, bias)
            if signal is not None:
                signals.append(signal)
        return signals

    def clear(self) -> None:
        self._last.clear()
        logger.info("Hourly crossover state cleared")

    def _store(self, spot_token: str) -> tuple[str, BarStore]:
        entry = self._stores.get(spot_token)
        if entry is None:
            raise MissingData(f"No hourly store registered for token {spot_token}")
        return entry
