"""Tests for HolidayCalendar."""

import json
from datetime import date

import pytest

from fno_engine.core.errors import DeserializationError
from fno_engine.session.trading_calendar import HolidayCalendar


class TestHolidayCalendar:
    def test_packaged_calendar(self):
        cal = HolidayCalendar.load()
        assert len(cal.holidays) == 20
        assert cal.is_holiday(date(2025, 4, 10))
        assert cal.holiday_name(date(2025, 12, 25)) == "Christmas"

    def test_weekends_and_holidays(self):
        cal = HolidayCalendar([date(2025, 4, 10)])
        assert cal.is_trading_day(date(2025, 1, 6))       # Monday
        assert not cal.is_trading_day(date(2025, 1, 4))   # Saturday
        assert not cal.is_trading_day(date(2025, 1, 5))   # Sunday
        assert not cal.is_trading_day(date(2025, 4, 10))

    def test_next_and_previous_trading_day(self):
        cal = HolidayCalendar([date(2025, 4, 14)])
        assert cal.next_trading_day(date(2025, 4, 11)) == date(2025, 4, 15)
        assert cal.previous_trading_day(date(2025, 4, 15)) == date(2025, 4, 11)

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "holidays.json"
        path.write_text(json.dumps([{"date": "2026-01-26", "name": "Republic Day"}]))
        cal = HolidayCalendar.load(path)
        assert cal.holidays == [date(2026, 1, 26)]

    def test_missing_file_falls_back(self, tmp_path):
        cal = HolidayCalendar.load(tmp_path / "nope.json")
        assert cal.is_holiday(date(2025, 4, 10))

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "holidays.json"
        path.write_text("{not json")
        with pytest.raises(DeserializationError):
            HolidayCalendar.load(path)

    def test_invalid_record(self):
        with pytest.raises(DeserializationError):
            HolidayCalendar().load_from_list([{"date": "2025-13-40"}])
