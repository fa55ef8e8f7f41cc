"""Historical candle sync and data-gap recovery.

Fetches candles through the broker's historical interface (rate limited) and
appends only bars strictly newer than the store's last bar. Candles whose
interval has not closed yet at ``end`` are skipped, so a forming bar is never
persisted as complete.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable

from fno_engine.broker.gateway import CANDLE_INTERVALS
from fno_engine.broker.rate_limiter import TokenBucket
from fno_engine.core.data_types import Event, utc_now
from fno_engine.core.errors import RecoveryFailed, RecoveryTimeout, TradingError
from fno_engine.core.types import EventKind
from fno_engine.data.bar_store import BarStore

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    symbol: str
    timeframe: str
    start: datetime
    end: datetime
    fetched: int = 0
    appended: int = 0
    errors: list[str] = field(default_factory=list)


class HistoricalSync:
    def __init__(
        self,
        gateway,
        rate_limiter: TokenBucket | None = None,
        event_bus=None,
        clock: Callable[[], datetime] = utc_now,
        recovery_timeout_sec: float = 30.0,
    ) -> None:
        self._gateway = gateway
        self._limiter = rate_limiter
        self._event_bus = event_bus
        self._clock = clock
        self._recovery_timeout = recovery_timeout_sec

    async def sync(
        self,
        token: str,
        store: BarStore,
        lookback: timedelta,
        end: datetime | None = None,
    ) -> SyncReport:
        """Backfill ``store`` with candles from ``end - lookback`` to ``end``."""
        end = end or self._clock()
        start = end - lookback
        tf = store.timeframe
        report = SyncReport(symbol=store.symbol, timeframe=tf.value, start=start, end=end)

        if self._limiter is not None:
            await self._limiter.acquire()
        candles = await self._gateway.historical_candles(
            token, CANDLE_INTERVALS[tf.value], start, end
        )
        report.fetched = len(candles)

        interval = timedelta(seconds=tf.seconds)
        last = store.last()
        for bar in sorted(candles, key=lambda b: b.timestamp):
            if last is not None and bar.timestamp <= last.timestamp:
                continue
            if bar.timestamp + interval > end:
                continue
            await store.append(replace(bar, complete=True))
            last = bar
            report.appended += 1

        logger.info(
            "Synced %s %s: fetched %d, appended %d (store now %d in memory)",
            store.symbol, tf.value, report.fetched, report.appended, store.memory_count,
        )
        return report

    async def recover_gap(self, token: str, store: BarStore, since: datetime) -> SyncReport:
        """Fetch bars missed since ``since``, bounded by the recovery timeout."""
        payload = {"symbol": store.symbol, "timeframe": store.timeframe.value, "since": since.isoformat()}
        await self._publish(EventKind.RECOVERY_STARTED, payload)

        lookback = max(self._clock() - since, timedelta(seconds=store.timeframe.seconds))
        try:
            report = await asyncio.wait_for(
                self.sync(token, store, lookback), timeout=self._recovery_timeout
            )
        except asyncio.TimeoutError as e:
            await self._publish(EventKind.RECOVERY_FAILED, {**payload, "error": "timeout"})
            raise RecoveryTimeout(
                f"{store.symbol} {store.timeframe.value} recovery exceeded {self._recovery_timeout}s"
            ) from e
        except TradingError as e:
            await self._publish(EventKind.RECOVERY_FAILED, {**payload, "error": e.code})
            raise RecoveryFailed(f"{store.symbol} {store.timeframe.value}: {e.message}") from e

        await self._publish(EventKind.RECOVERY_COMPLETED, {**payload, "appended": report.appended})
        return report

    async def _publish(self, kind: EventKind, payload: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(
                Event.create(kind, payload, source="HistoricalSync", timestamp=self._clock())
            )
