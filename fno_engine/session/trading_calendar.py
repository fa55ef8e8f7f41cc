"""Holiday Calendar — NSE trading days (weekday check + exchange holiday set).

Holidays are loaded from a JSON list of {"date": "YYYY-MM-DD", "name": ...}
records; the packaged file is used when no path is given, with a built-in 2025
set as fallback.
"""

from __future__ import annotations

import json
import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Iterable

from fno_engine.core.errors import DeserializationError

logger = logging.getLogger(__name__)

DEFAULT_HOLIDAYS_PATH = Path(__file__).parent.parent / "config" / "nse_holidays.json"

WEEKEND = (5, 6)  # Saturday, Sunday


class HolidayCalendar:
    """Satisfies the TradingCalendar capability."""

    def __init__(self, holidays: Iterable[date] | None = None) -> None:
        self._holidays: dict[date, str] = {d: "" for d in (holidays or ())}

    @classmethod
    def load(cls, path: str | Path | None = None) -> HolidayCalendar:
        """Build from a JSON holiday file, falling back to the built-in set."""
        calendar = cls()
        data_path = Path(path) if path else DEFAULT_HOLIDAYS_PATH
        if data_path.exists():
            calendar.load_from_json(data_path)
        else:
            if path:
                logger.warning("Holiday file not found: %s, using built-in NSE 2025 set", data_path)
            calendar.load_from_list(_NSE_HOLIDAYS_2025)
        return calendar

    def load_from_json(self, path: str | Path) -> None:
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                records = json.load(f)
        except json.JSONDecodeError as e:
            raise DeserializationError(f"Invalid holiday file {path}: {e}") from e
        self.load_from_list(records)
        logger.info("Loaded %d holidays from %s", len(self._holidays), path)

    def load_from_list(self, records: list[dict]) -> None:
        holidays: dict[date, str] = {}
        for rec in records:
            try:
                day = date.fromisoformat(rec["date"])
            except (KeyError, TypeError, ValueError) as e:
                raise DeserializationError(f"Invalid holiday record: {rec!r}") from e
            holidays[day] = rec.get("name", "")
        self._holidays = holidays

    @property
    def holidays(self) -> list[date]:
        return sorted(self._holidays)

    def holiday_name(self, day: date) -> str | None:
        return self._holidays.get(day)

    def is_holiday(self, day: date) -> bool:
        return day in self._holidays

    def is_trading_day(self, day: date) -> bool:
        return day.weekday() not in WEEKEND and day not in self._holidays

    def next_trading_day(self, day: date) -> date:
        """First trading day strictly after ``day``."""
        d = day + timedelta(days=1)
        while not self.is_trading_day(d):
            d += timedelta(days=1)
        return d

    def previous_trading_day(self, day: date) -> date:
        """Last trading day strictly before ``day``."""
        d = day - timedelta(days=1)
        while not self.is_trading_day(d):
            d -= timedelta(days=1)
        return d


_NSE_HOLIDAYS_2025 = [
    {"date": "2025-01-26", "name": "Republic Day"},
    {"date": "2025-02-26", "name": "Mahashivratri"},
    {"date": "2025-03-14", "name": "Holi"},
    {"date": "2025-03-31", "name": "Id-Ul-Fitr"},
    {"date": "2025-04-10", "name": "Shri Mahavir Jayanti"},
    {"date": "2025-04-14", "name": "Dr. Baba Saheb Ambedkar Jayanti"},
    {"date": "2025-04-18", "name": "Good Friday"},
    {"date": "2025-05-01", "name": "Maharashtra Day"},
    {"date": "2025-05-12", "name": "Buddha Pournima"},
    {"date": "2025-06-07", "name": "Bakri Id"},
    {"date": "2025-07-07", "name": "Muharram"},
    {"date": "2025-08-15", "name": "Independence Day"},
    {"date": "2025-08-27", "name": "Ganesh Chaturthi"},
    {"date": "2025-09-05", "name": "Id-e-Milad"},
    {"date": "2025-10-02", "name": "Mahatma Gandhi Jayanti / Dussehra"},
    {"date": "2025-10-12", "name": "Holiday"},
    {"date": "2025-10-20", "name": "Diwali"},
    {"date": "2025-10-21", "name": "Diwali Laxmi Pujan"},
    {"date": "2025-11-05", "name": "Prakash Gurpurb Sri Guru Nanak Dev"},
    {"date": "2025-12-25", "name": "Christmas"},
]
