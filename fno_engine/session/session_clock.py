"""SessionClock — trading-day eligibility and market-session boundaries.

All inputs and outputs are UTC; exchange-local time (Asia/Kolkata) is used only
to compare against the configured session times.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable

from fno_engine.broker.gateway import TradingCalendar
from fno_engine.config.engine_config import EngineConfig
from fno_engine.core.data_types import utc_now
from fno_engine.data.bar_aggregator import IST

logger = logging.getLogger(__name__)


class SessionClock:
    def __init__(
        self,
        config: EngineConfig,
        calendar: TradingCalendar,
        clock: Callable[[], datetime] = utc_now,
        tz: tzinfo = IST,
    ) -> None:
        self._config = config
        self._calendar = calendar
        self._clock = clock
        self._tz = tz

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return self._clock()

    def local_now(self, now: datetime | None = None) -> datetime:
        return (now or self._clock()).astimezone(self._tz)

    def local_date(self, now: datetime | None = None) -> date:
        return self.local_now(now).date()

    def is_trading_day(self, day: date) -> bool:
        return self._calendar.is_trading_day(day)

    def session_window(self, day: date) -> tuple[datetime, datetime]:
        """(open, close) of ``day``'s session, in UTC."""
        return (
            self._at(day, self._config.market_open_time),
            self._at(day, self._config.market_close_time),
        )

    def is_market_open(self, now: datetime | None = None) -> bool:
        local = self.local_now(now)
        if not self.is_trading_day(local.date()):
            return False
        return self._config.market_open_time <= local.time() < self._config.market_close_time

    def is_in_entry_window(self, now: datetime | None = None) -> bool:
        local = self.local_now(now)
        if not self.is_trading_day(local.date()):
            return False
        return self._config.entry_window_start <= local.time() < self._config.entry_window_end

    def is_eod(self, now: datetime | None = None) -> bool:
        return self.local_now(now).time() >= self._config.eod_exit_time

    def is_past_open_delay(self, now: datetime | None = None) -> bool:
        """True once ``session_open_delay_min`` has elapsed since today's open."""
        local = self.local_now(now)
        open_utc, _ = self.session_window(local.date())
        delay = timedelta(minutes=self._config.session_open_delay_min)
        return (now or self._clock()) >= open_utc + delay

    def next_expiry(self, day: date) -> date:
        """Weekly expiry on or after ``day``, moved to the prior trading day on holidays."""
        weekday = self._config.weekly_expiry_weekday
        candidate = day + timedelta(days=(weekday - day.weekday()) % 7)
        while True:
            expiry = candidate
            while not self.is_trading_day(expiry):
                expiry -= timedelta(days=1)
            if expiry >= day:
                return expiry
            candidate += timedelta(days=7)

    def days_to_expiry(self, now: datetime | None = None) -> int:
        today = self.local_date(now)
        return (self.next_expiry(today) - today).days

    def next_market_open(self, now: datetime | None = None) -> datetime:
        """Next session open strictly after ``now`` (today's if still ahead)."""
        now = now or self._clock()
        today = self.local_date(now)
        if self.is_trading_day(today):
            open_utc, _ = self.session_window(today)
            if now < open_utc:
                return open_utc
        day = today + timedelta(days=1)
        while not self.is_trading_day(day):
            day += timedelta(days=1)
        return self.session_window(day)[0]

    def _at(self, day: date, t: time) -> datetime:
        return datetime.combine(day, t, tzinfo=self._tz).astimezone(timezone.utc)
