"""ADX Strategy — daily bias, hourly alignment, entry filters.

Flow per trading day:
  1. Daily ADX/DMI sets the bias once (CALL, PUT or NO_TRADE)
  2. Each completed hourly bar re-checks alignment with the bias
  3. While aligned, entry filters run in order and short-circuit:
       RSI  — CALL needs RSI < overbought, PUT needs RSI > oversold
       EMA  — CALL needs close > EMA, PUT needs close < EMA
       VIX  — VIX <= trading threshold
  4. All filters pass → EntrySignal (always a long option at the ATM strike)

While a position is open, a reversal of hourly DI asymmetry publishes ALIGNMENT_LOST.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Sequence

from fno_engine.config.engine_config import EngineConfig
from fno_engine.core.data_types import Bar, EntrySignal, Event, utc_now
from fno_engine.core.errors import MissingData
from fno_engine.core.types import Bias, EventKind, StrategyState
from fno_engine.strategy import indicators
from fno_engine.strategy.indicators import AdxReading
from fno_engine.strategy.state_machine import StrategyStateMachine

logger = logging.getLogger(__name__)


@dataclass
class FilterResult:
    name: str
    passed: bool
    value: float
    threshold: float


@dataclass
class FilterOutcome:
    passed: bool
    results: list[FilterResult] = field(default_factory=list)

    @property
    def failed_filter(self) -> str | None:
        for r in self.results:
            if not r.passed:
                return r.name
        return None


class AdxStrategy:
    """Single-underlying ADX/DMI strategy driven by the orchestrator."""

    def __init__(
        self,
        config: EngineConfig,
        event_bus=None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._event_bus = event_bus
        self._clock = clock
        self._sm = StrategyStateMachine()

        self._bias: Bias | None = None
        self._daily_reading: AdxReading | None = None
        self._hourly_reading: AdxReading | None = None
        self._last_daily_analysis: datetime | None = None
        self._last_hourly_analysis: datetime | None = None

    @property
    def state(self) -> StrategyState:
        return self._sm.state

    @property
    def state_machine(self) -> StrategyStateMachine:
        return self._sm

    @property
    def bias(self) -> Bias | None:
        return self._bias

    @property
    def daily_analysis_done(self) -> bool:
        return self._bias is not None

    @property
    def daily_reading(self) -> AdxReading | None:
        return self._daily_reading

    @property
    def hourly_reading(self) -> AdxReading | None:
        return self._hourly_reading

    @property
    def last_hourly_analysis(self) -> datetime | None:
        return self._last_hourly_analysis

    # ── Daily direction ─────────────────────────────────────────────────

    async def analyze_daily(self, daily_bars: Sequence[Bar]) -> Bias:
        reading = indicators.adx(daily_bars, self._config.daily_adx_period)
        if reading is None:
            raise MissingData(
                f"Insufficient bars for daily ADX ({len(daily_bars)} < "
                f"{self._config.daily_adx_period + 1})"
            )
        return await self.apply_daily_reading(reading)

    async def apply_daily_reading(self, reading: AdxReading) -> Bias:
        threshold = self._config.daily_adx_threshold
        if reading.adx < threshold:
            logger.info("Daily ADX (%.2f) below threshold (%.2f) - NO TRADE", reading.adx, threshold)
            bias = Bias.NO_TRADE
        elif reading.plus_di > reading.minus_di:
            logger.info(
                "Daily uptrend: +DI (%.2f) > -DI (%.2f), ADX %.2f",
                reading.plus_di, reading.minus_di, reading.adx,
            )
            bias = Bias.CALL
        elif reading.minus_di > reading.plus_di:
            logger.info(
                "Daily downtrend: -DI (%.2f) > +DI (%.2f), ADX %.2f",
                reading.minus_di, reading.plus_di, reading.adx,
            )
            bias = Bias.PUT
        else:
            logger.warning("Daily direction unclear - NO TRADE")
            bias = Bias.NO_TRADE

        self._bias = bias
        self._daily_reading = reading
        self._last_daily_analysis = self._clock()

        payload = {
            "bias": bias.value,
            "adx": reading.adx,
            "plus_di": reading.plus_di,
            "minus_di": reading.minus_di,
            "threshold": threshold,
        }
        if bias is Bias.NO_TRADE:
            self._sm.reset()
            await self._publish(EventKind.NO_TRADE_MODE_ACTIVE, payload)
        else:
            self._sm.reset()
            self._sm.transition_to(StrategyState.DAILY_DIRECTION_SET)
            await self._publish(EventKind.DAILY_DIRECTION_DETERMINED, payload)
        return bias

    # ── Hourly alignment ────────────────────────────────────────────────

    async def analyze_hourly(self, hourly_bars: Sequence[Bar]) -> bool:
        if self._bias in (None, Bias.NO_TRADE):
            return False
        reading = indicators.adx(hourly_bars, self._config.hourly_adx_period)
        if reading is None:
            raise MissingData(
                f"Insufficient bars for hourly ADX ({len(hourly_bars)} < "
                f"{self._config.hourly_adx_period + 1})"
            )
        return await self.apply_hourly_reading(reading)

    async def apply_hourly_reading(self, reading: AdxReading) -> bool:
        """Update alignment from an hourly ADX reading. Returns True when aligned."""
        if self._bias in (None, Bias.NO_TRADE):
            return False

        self._hourly_reading = reading
        self._last_hourly_analysis = self._clock()
        aligned = (
            reading.adx >= self._config.hourly_adx_threshold
            and self._di_agrees(self._bias, reading)
        )

        # A bias survives an emitted signal; re-arm the daily state for the next hour
        if self._sm.state == StrategyState.IDLE:
            self._sm.transition_to(StrategyState.DAILY_DIRECTION_SET)

        if aligned:
            if self._sm.state == StrategyState.DAILY_DIRECTION_SET:
                self._sm.transition_to(StrategyState.HOURLY_ALIGNED)
                logger.info(
                    "Hourly alignment confirmed for %s (ADX %.2f)", self._bias.value, reading.adx
                )
                await self._publish(EventKind.HOURLY_ALIGNMENT_CONFIRMED, {
                    "bias": self._bias.value,
                    "adx": reading.adx,
                    "plus_di": reading.plus_di,
                    "minus_di": reading.minus_di,
                })
        else:
            logger.debug("Hourly alignment not confirmed for %s", self._bias.value)
            if self._sm.state == StrategyState.HOURLY_ALIGNED:
                self._sm.transition_to(StrategyState.DAILY_DIRECTION_SET)
        return aligned

    # ── Entry filters ───────────────────────────────────────────────────

    async def evaluate_filters(
        self,
        rsi_value: float,
        last_close: float,
        ema_value: float,
        vix: float,
    ) -> FilterOutcome:
        """Run RSI → EMA → VIX filters for the current bias, stopping at the first failure."""
        cfg = self._config
        is_call = self._bias is Bias.CALL
        checks = (
            (
                "rsi",
                lambda: rsi_value < cfg.rsi_overbought if is_call else rsi_value > cfg.rsi_oversold,
                rsi_value,
                cfg.rsi_overbought if is_call else cfg.rsi_oversold,
            ),
            (
                "ema",
                lambda: last_close > ema_value if is_call else last_close < ema_value,
                last_close,
                ema_value,
            ),
            ("vix", lambda: vix <= cfg.vix_threshold, vix, cfg.vix_threshold),
        )

        outcome = FilterOutcome(passed=True)
        for name, check, value, threshold in checks:
            passed = bool(check())
            outcome.results.append(FilterResult(name, passed, value, threshold))
            if not passed:
                outcome.passed = False
                logger.debug("%s filter failed: value %.2f vs %.2f", name.upper(), value, threshold)
                break

        await self._publish(EventKind.ENTRY_FILTERS_EVALUATED, {
            "bias": self._bias.value if self._bias else None,
            "passed": outcome.passed,
            "failed_filter": outcome.failed_filter,
            "filters": [
                {"name": r.name, "passed": r.passed, "value": r.value, "threshold": r.threshold}
                for r in outcome.results
            ],
        })
        return outcome

    async def evaluate_entry(
        self,
        hourly_bars: Sequence[Bar],
        underlying_ltp: float,
        vix: float,
        now: datetime | None = None,
    ) -> EntrySignal | None:
        if self._bias in (None, Bias.NO_TRADE) or self._sm.state != StrategyState.HOURLY_ALIGNED:
            return None
        if not hourly_bars:
            raise MissingData("No hourly bars available")

        rsi_value = indicators.rsi(hourly_bars, self._config.rsi_period)
        if rsi_value is None:
            raise MissingData("Insufficient bars for RSI")
        ema_value = indicators.ema(hourly_bars, self._config.ema_period)
        if ema_value is None:
            raise MissingData("Insufficient bars for EMA")

        return await self.evaluate_entry_values(
            rsi_value, ema_value, hourly_bars[-1].close, underlying_ltp, vix, now
        )

    async def evaluate_entry_values(
        self,
        rsi_value: float,
        ema_value: float,
        last_close: float,
        underlying_ltp: float,
        vix: float,
        now: datetime | None = None,
    ) -> EntrySignal | None:
        """Filter pass → signal, from precomputed indicator values."""
        if self._bias in (None, Bias.NO_TRADE) or self._sm.state != StrategyState.HOURLY_ALIGNED:
            return None

        outcome = await self.evaluate_filters(rsi_value, last_close, ema_value, vix)
        if not outcome.passed:
            await self._publish(EventKind.NO_TRADE_SIGNAL, {
                "bias": self._bias.value,
                "failed_filter": outcome.failed_filter,
            })
            return None

        self._sm.transition_to(StrategyState.SIGNAL_ARMED)
        strike = indicators.atm_strike(underlying_ltp, self._config.strike_increment)
        reason = (
            f"Daily: {self._bias.value}, Hourly aligned, RSI: {rsi_value:.1f}, "
            f"EMA: {ema_value:.1f}, VIX: {vix:.1f}"
        )
        signal = EntrySignal(
            bias=self._bias,
            underlying=self._config.underlying,
            underlying_ltp=underlying_ltp,
            strike=strike,
            option_type=self._bias.option_type,
            reason=reason,
            timestamp=now or self._clock(),
        )
        logger.info(
            "Entry signal: %s %s @ strike %.0f (LTP %.2f)",
            signal.underlying, signal.option_type.value, strike, underlying_ltp,
        )
        await self._publish(EventKind.SIGNAL_GENERATED, {
            "bias": signal.bias.value,
            "underlying": signal.underlying,
            "underlying_ltp": underlying_ltp,
            "strike": strike,
            "option_type": signal.option_type.value,
            "side": signal.side.value,
            "reason": reason,
            "confidence": signal.confidence,
        })
        self._sm.transition_to(StrategyState.IDLE)
        return signal

    # ── Technical exit ──────────────────────────────────────────────────

    async def check_technical_exit(
        self,
        entry_bias: Bias,
        hourly_bars: Sequence[Bar],
        position_id: str | None = None,
    ) -> bool:
        reading = indicators.adx(hourly_bars, self._config.hourly_adx_period)
        if reading is None:
            return False
        return await self.apply_technical_reading(entry_bias, reading, position_id)

    async def apply_technical_reading(
        self,
        entry_bias: Bias,
        reading: AdxReading,
        position_id: str | None = None,
    ) -> bool:
        """True (and ALIGNMENT_LOST published) when hourly DI no longer agrees with the entry."""
        if self._di_agrees(entry_bias, reading):
            return False
        logger.info(
            "Technical exit: alignment lost for %s (+DI %.2f, -DI %.2f)",
            entry_bias.value, reading.plus_di, reading.minus_di,
        )
        await self._publish(EventKind.ALIGNMENT_LOST, {
            "bias": entry_bias.value,
            "position_id": position_id,
            "plus_di": reading.plus_di,
            "minus_di": reading.minus_di,
        })
        return True

    def reset(self) -> None:
        """Clear all daily state (EOD)."""
        self._bias = None
        self._daily_reading = None
        self._hourly_reading = None
        self._last_daily_analysis = None
        self._last_hourly_analysis = None
        self._sm.reset()
        logger.info("Strategy state reset")

    def snapshot(self) -> dict:
        return {
            "state": self._sm.state.name,
            "bias": self._bias.value if self._bias else None,
            "daily_adx": self._daily_reading._asdict() if self._daily_reading else None,
            "hourly_adx": self._hourly_reading._asdict() if self._hourly_reading else None,
        }

    @staticmethod
    def _di_agrees(bias: Bias, reading: AdxReading) -> bool:
        if bias is Bias.CALL:
            return reading.plus_di > reading.minus_di
        if bias is Bias.PUT:
            return reading.minus_di > reading.plus_di
        return False

    async def _publish(self, kind: EventKind, payload: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(
                Event.create(kind, payload, source="AdxStrategy", timestamp=self._clock())
            )
