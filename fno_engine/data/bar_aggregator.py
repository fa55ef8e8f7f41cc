"""BarAggregator — folds ticks into bars at timeframe boundaries.

Boundaries are floored in exchange-local time (Asia/Kolkata) and stored as UTC.
A tick whose boundary is later than the partial bar's completes the partial:
the bar is appended to the BarStore, BAR_READY is published, and a new partial
opens from that tick.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone, tzinfo
from typing import Callable
from zoneinfo import ZoneInfo

from fno_engine.core.data_types import Bar, Event, Tick, to_epoch_ms, utc_now
from fno_engine.core.errors import InvalidBarData
from fno_engine.core.types import EventKind, Timeframe
from fno_engine.data.bar_store import BarStore

logger = logging.getLogger(__name__)

IST = ZoneInfo("Asia/Kolkata")


def bar_boundary(ts: datetime, timeframe: Timeframe, tz: tzinfo = IST) -> datetime:
    """Floor ``ts`` to its timeframe interval in local time; return it in UTC."""
    local = ts.astimezone(tz)
    if timeframe is Timeframe.D1:
        floored = local.replace(hour=0, minute=0, second=0, microsecond=0)
    else:
        minute_of_day = local.hour * 60 + local.minute
        start = minute_of_day - minute_of_day % timeframe.minutes
        floored = local.replace(hour=start // 60, minute=start % 60, second=0, microsecond=0)
    return floored.astimezone(timezone.utc)


class BarAggregator:
    """Aggregates ticks for one (symbol, timeframe)."""

    def __init__(
        self,
        symbol: str,
        timeframe: Timeframe,
        store: BarStore,
        event_bus=None,
        token: str = "",
        clock: Callable[[], datetime] = utc_now,
        tz: tzinfo = IST,
    ) -> None:
        self._symbol = symbol
        self._timeframe = timeframe
        self._store = store
        self._event_bus = event_bus
        self._token = token
        self._clock = clock
        self._tz = tz

        self._partial: Bar | None = None
        self._tick_count = 0
        self._last_tick_time: datetime | None = None

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def token(self) -> str:
        return self._token

    @property
    def timeframe(self) -> Timeframe:
        return self._timeframe

    @property
    def store(self) -> BarStore:
        return self._store

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick_time(self) -> datetime | None:
        return self._last_tick_time

    def current_bar(self) -> Bar | None:
        """Snapshot of the partial bar (complete=False), or None."""
        return self._partial

    async def process_tick(self, tick: Tick) -> Bar | None:
        """Fold one tick. Returns the bar it completed, if any."""
        boundary = bar_boundary(tick.timestamp, self._timeframe, self._tz)
        price = tick.last_price
        completed: Bar | None = None

        if self._partial is None:
            self._open(boundary, tick)
        elif boundary == self._partial.timestamp:
            p = self._partial
            self._partial = replace(
                p,
                high=max(p.high, price),
                low=min(p.low, price),
                close=price,
                volume=p.volume + tick.volume,
            )
            self._tick_count += 1
        elif boundary > self._partial.timestamp:
            completed = await self._complete()
            self._open(boundary, tick)
        else:
            logger.warning(
                "%s %s: dropping late tick at %s (partial bar %s)",
                self._symbol,
                self._timeframe.value,
                tick.timestamp.isoformat(),
                self._partial.timestamp.isoformat(),
            )
            return None

        self._last_tick_time = self._clock()
        return completed

    async def finalize(self) -> Bar | None:
        """Force-complete the partial bar (EOD). No-op without one."""
        if self._partial is None:
            return None
        return await self._complete()

    def gap_check(self, threshold_sec: float) -> bool:
        """True if no tick has been accepted within ``threshold_sec`` (or ever)."""
        if self._last_tick_time is None:
            return True
        elapsed = (self._clock() - self._last_tick_time).total_seconds()
        return elapsed > threshold_sec

    def _open(self, boundary: datetime, tick: Tick) -> None:
        self._partial = Bar(
            timestamp=boundary,
            open=tick.last_price,
            high=tick.last_price,
            low=tick.last_price,
            close=tick.last_price,
            volume=tick.volume,
            complete=False,
        )
        self._tick_count = 1

    async def _complete(self) -> Bar | None:
        bar = replace(self._partial, complete=True)
        try:
            await self._store.append(bar)
        except InvalidBarData as e:
            # Already backfilled by gap recovery
            logger.warning("%s %s: bar not stored: %s", self._symbol, self._timeframe.value, e.message)
            self._partial = None
            self._tick_count = 0
            return None
        self._partial = None
        self._tick_count = 0
        logger.debug(
            "%s %s bar complete @ %s O=%.2f H=%.2f L=%.2f C=%.2f",
            self._symbol, self._timeframe.value, bar.timestamp.isoformat(),
            bar.open, bar.high, bar.low, bar.close,
        )

        if self._event_bus is not None:
            await self._event_bus.publish(Event.create(
                EventKind.BAR_READY,
                {
                    "symbol": self._symbol,
                    "timeframe": self._timeframe.value,
                    "boundary": bar.timestamp.isoformat(),
                    "bar": bar.to_dict(),
                },
                source="BarAggregator",
                timestamp=self._clock(),
                idempotency_key=(
                    f"BAR_READY:{self._symbol}:{self._timeframe.value}:{to_epoch_ms(bar.timestamp)}"
                ),
            ))
        return bar


class MultiBarAggregator:
    """Fans each tick out to every aggregator matching its symbol or token."""

    def __init__(self) -> None:
        self._aggregators: list[BarAggregator] = []

    @property
    def aggregators(self) -> list[BarAggregator]:
        return list(self._aggregators)

    def add(self, aggregator: BarAggregator) -> None:
        self._aggregators.append(aggregator)

    def get(self, symbol: str, timeframe: Timeframe) -> BarAggregator | None:
        for agg in self._aggregators:
            if agg.symbol == symbol and agg.timeframe is timeframe:
                return agg
        return None

    async def process_tick(self, tick: Tick) -> list[Bar]:
        completed = []
        for agg in self._aggregators:
            if agg.symbol == tick.symbol or (agg.token and agg.token == tick.token):
                bar = await agg.process_tick(tick)
                if bar is not None:
                    completed.append(bar)
        return completed

    async def finalize_all(self) -> list[Bar]:
        completed = []
        for agg in self._aggregators:
            bar = await agg.finalize()
            if bar is not None:
                completed.append(bar)
        return completed

    def check_all_gaps(self, threshold_sec: float) -> list[tuple[str, Timeframe]]:
        return [
            (agg.symbol, agg.timeframe)
            for agg in self._aggregators
            if agg.gap_check(threshold_sec)
        ]
