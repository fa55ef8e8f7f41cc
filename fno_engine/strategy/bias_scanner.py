"""Bias Scanner — daily ADX/DMI bias across many F&O underlyings.

Same direction rule as the single-underlying strategy, iterated over a token
list. Results can be written as ``bias_YYYYMMDD.json`` for the trading day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Mapping, Sequence

from fno_engine.core.data_types import Bar
from fno_engine.core.types import Bias
from fno_engine.strategy import indicators
from fno_engine.utils.files import atomic_write_json, dated_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BiasToken:
    underlying: str
    spot_token: str
    spot_symbol: str = ""
    asset_type: str = "STOCK"


@dataclass(frozen=True)
class DailyBias:
    underlying: str
    spot_token: str
    bias: Bias
    adx: float
    plus_di: float
    minus_di: float
    close_price: float
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "underlying": self.underlying,
            "spot_token": self.spot_token,
            "bias": self.bias.value,
            "adx": self.adx,
            "plus_di": self.plus_di,
            "minus_di": self.minus_di,
            "close_price": self.close_price,
            "timestamp": self.timestamp.isoformat(),
        }


class BiasScanner:
    def __init__(self, adx_period: int = 14, adx_threshold: float = 25.0) -> None:
        self._period = adx_period
        self._threshold = adx_threshold

    def calculate(self, token: BiasToken, daily_bars: Sequence[Bar]) -> DailyBias | None:
        """Bias for one underlying, or None when there are too few bars."""
        reading = indicators.adx(daily_bars, self._period)
        if reading is None:
            logger.warning(
                "%s: not enough bars for ADX (%d < %d)",
                token.underlying, len(daily_bars), self._period + 1,
            )
            return None

        if reading.adx < self._threshold:
            bias = Bias.NO_TRADE
        elif reading.plus_di > reading.minus_di:
            bias = Bias.CALL
        elif reading.minus_di > reading.plus_di:
            bias = Bias.PUT
        else:
            bias = Bias.NO_TRADE

        last = daily_bars[-1]
        return DailyBias(
            underlying=token.underlying,
            spot_token=token.spot_token,
            bias=bias,
            adx=reading.adx,
            plus_di=reading.plus_di,
            minus_di=reading.minus_di,
            close_price=last.close,
            timestamp=last.timestamp,
        )

    def scan(
        self,
        tokens: Sequence[BiasToken],
        bars_by_token: Mapping[str, Sequence[Bar]],
    ) -> list[DailyBias]:
        logger.info("Calculating daily bias for %d underlyings", len(tokens))
        results: list[DailyBias] = []
        for idx, token in enumerate(tokens):
            if idx and idx % 20 == 0:
                logger.info("Progress: %d/%d", idx, len(tokens))
            bars = bars_by_token.get(token.spot_token)
            if not bars:
                logger.warning("%s: no bars available", token.underlying)
                continue
            result = self.calculate(token, bars)
            if result is not None:
                results.append(result)
        logger.info("Calculated bias for %d underlyings", len(results))
        return results

    @staticmethod
    def filter_by_bias(biases: Sequence[DailyBias], bias: Bias) -> list[DailyBias]:
        return [b for b in biases if b.bias is bias]

    @staticmethod
    def summary(biases: Sequence[DailyBias]) -> dict[str, int]:
        return {
            "total": len(biases),
            "ce_count": sum(1 for b in biases if b.bias is Bias.CALL),
            "pe_count": sum(1 for b in biases if b.bias is Bias.PUT),
            "no_trade_count": sum(1 for b in biases if b.bias is Bias.NO_TRADE),
        }

    def write(self, biases: Sequence[DailyBias], data_dir: str | Path, day: date) -> Path:
        path = Path(data_dir) / dated_name("bias", day)
        atomic_write_json(path, {
            "date": day.isoformat(),
            "summary": self.summary(biases),
            "biases": [b.to_dict() for b in biases],
        })
        logger.info("Wrote %d biases to %s", len(biases), path)
        return path
