"""Premarket Selector — ATM option pair for each biased underlying, chosen before the open.

For every CE/PE daily bias:
  1. ATM strike = previous close rounded to the underlying's strike increment
  2. Expiry = nearest with enough days left (indices >= 2, stocks >= 7);
     when every expiry is closer than that, the farthest one
  3. CE and PE tokens at that strike and expiry from the instrument directory

The day's selection is written as ``preselected_YYYYMMDD.json``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Sequence

from fno_engine.broker.instrument_directory import InstrumentDirectory
from fno_engine.core.errors import InstrumentNotFound
from fno_engine.core.types import Bias, OptionType
from fno_engine.strategy import indicators
from fno_engine.strategy.bias_scanner import DailyBias
from fno_engine.utils.files import atomic_write_json, dated_name

logger = logging.getLogger(__name__)

INDEX_UNDERLYINGS = frozenset({"NIFTY", "BANKNIFTY", "FINNIFTY", "MIDCPNIFTY"})
STRIKE_INCREMENTS = {"NIFTY": 50.0, "FINNIFTY": 50.0, "BANKNIFTY": 100.0}
DEFAULT_STRIKE_INCREMENT = 50.0
MIN_DTE_INDEX = 2
MIN_DTE_STOCK = 7


@dataclass(frozen=True)
class AtmStrike:
    strike: float
    distance_from_price: float


@dataclass(frozen=True)
class PreSelectedOption:
    underlying: str
    spot_token: str
    bias: Bias
    close_price: float
    atm_strike: AtmStrike
    expiry: date
    lot_size: int
    ce_token: str | None = None
    ce_symbol: str | None = None
    pe_token: str | None = None
    pe_symbol: str | None = None

    def tradeable(self) -> tuple[str, str] | None:
        """(token, symbol) of the leg matching the bias, or None when it is missing."""
        if self.bias is Bias.CALL and self.ce_token and self.ce_symbol:
            return self.ce_token, self.ce_symbol
        if self.bias is Bias.PUT and self.pe_token and self.pe_symbol:
            return self.pe_token, self.pe_symbol
        return None

    def to_dict(self) -> dict:
        return {
            "underlying": self.underlying,
            "spot_token": self.spot_token,
            "bias": self.bias.value,
            "close_price": self.close_price,
            "atm_strike": {
                "strike": self.atm_strike.strike,
                "distance_from_price": self.atm_strike.distance_from_price,
            },
            "expiry": self.expiry.isoformat(),
            "lot_size": self.lot_size,
            "ce_token": self.ce_token,
            "ce_symbol": self.ce_symbol,
            "pe_token": self.pe_token,
            "pe_symbol": self.pe_symbol,
        }


class PremarketSelector:
    def __init__(self, instruments: InstrumentDirectory) -> None:
        self._instruments = instruments

    def strike_increment(self, underlying: str) -> float:
        name = underlying.upper()
        if name in STRIKE_INCREMENTS:
            return STRIKE_INCREMENTS[name]
        # stocks: spacing of the two lowest listed strikes
        strikes = self._instruments.strikes(name)
        if len(strikes) >= 2 and strikes[1] > strikes[0]:
            return strikes[1] - strikes[0]
        return DEFAULT_STRIKE_INCREMENT

    def select_atm_strike(self, underlying: str, close_price: float) -> AtmStrike:
        strike = indicators.atm_strike(close_price, self.strike_increment(underlying))
        distance = abs(strike - close_price)
        logger.info("%s @ %.2f -> ATM strike %g (distance %.2f)", underlying, close_price, strike, distance)
        return AtmStrike(strike=strike, distance_from_price=distance)

    def select_expiry(self, underlying: str, day: date) -> date | None:
        expiries = self._instruments.expiries(underlying)
        if not expiries:
            return None
        min_dte = MIN_DTE_INDEX if underlying.upper() in INDEX_UNDERLYINGS else MIN_DTE_STOCK
        for expiry in expiries:
            dte = (expiry - day).days
            if dte >= min_dte:
                logger.info("%s: expiry %s selected (DTE %d)", underlying, expiry, dte)
                return expiry
            logger.info("%s: expiry %s skipped (DTE %d < %d)", underlying, expiry, dte, min_dte)
        logger.warning("%s: all expiries too close, using farthest %s", underlying, expiries[-1])
        return expiries[-1]

    def select(self, bias: DailyBias, day: date) -> PreSelectedOption | None:
        if bias.bias is Bias.NO_TRADE:
            return None
        expiry = self.select_expiry(bias.underlying, day)
        if expiry is None:
            logger.warning("%s: no option expiries listed", bias.underlying)
            return None
        atm = self.select_atm_strike(bias.underlying, bias.close_price)

        legs: dict[OptionType, tuple[str, str, int]] = {}
        for option_type in (OptionType.CALL, OptionType.PUT):
            try:
                legs[option_type] = self._instruments.find_option(
                    bias.underlying, atm.strike, option_type, expiry
                )
            except InstrumentNotFound:
                logger.debug("%s: no %s at %g expiring %s",
                             bias.underlying, option_type.value, atm.strike, expiry)
        if not legs:
            logger.warning("%s: no options at strike %g for expiry %s",
                           bias.underlying, atm.strike, expiry)
            return None

        ce = legs.get(OptionType.CALL)
        pe = legs.get(OptionType.PUT)
        return PreSelectedOption(
            underlying=bias.underlying,
            spot_token=bias.spot_token,
            bias=bias.bias,
            close_price=bias.close_price,
            atm_strike=atm,
            expiry=expiry,
            lot_size=(ce or pe)[2],
            ce_token=ce[0] if ce else None,
            ce_symbol=ce[1] if ce else None,
            pe_token=pe[0] if pe else None,
            pe_symbol=pe[1] if pe else None,
        )

    def select_all(self, biases: Sequence[DailyBias], day: date) -> list[PreSelectedOption]:
        logger.info("Selecting premarket ATM options for %d biases", len(biases))
        selected = [o for o in (self.select(b, day) for b in biases) if o is not None]
        logger.info(
            "Selected %d options: %d CE, %d PE",
            len(selected),
            sum(1 for o in selected if o.bias is Bias.CALL),
            sum(1 for o in selected if o.bias is Bias.PUT),
        )
        return selected

    @staticmethod
    def write(options: Sequence[PreSelectedOption], data_dir: str | Path, day: date) -> Path:
        path = Path(data_dir) / dated_name("preselected", day)
        atomic_write_json(path, {
            "date": day.isoformat(),
            "count": len(options),
            "options": [o.to_dict() for o in options],
        })
        logger.info("Wrote %d preselected options to %s", len(options), path)
        return path
