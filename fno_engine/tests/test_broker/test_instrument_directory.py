"""Tests for the instrument master index."""

import json
from datetime import date

import pytest

from fno_engine.broker.gateway import InstrumentLookup
from fno_engine.broker.instrument_directory import InstrumentDirectory, parse_record
from fno_engine.core.errors import DataFileNotFound, DeserializationError, InstrumentNotFound
from fno_engine.core.types import InstrumentKind, OptionType

RECORDS = [
    {"token": "26000", "symbol": "NIFTY", "name": "NIFTY", "instrumenttype": "INDEX", "exch_seg": "NSE"},
    {"token": "1001", "symbol": "NIFTY02JAN2520000CE", "name": "NIFTY", "instrumenttype": "OPTIDX",
     "expiry": "2025-01-02", "strike": 20000, "option_type": "CE", "lotsize": 75},
    {"token": "1002", "symbol": "NIFTY09JAN2520000CE", "name": "NIFTY", "instrumenttype": "OPTIDX",
     "expiry": "2025-01-09", "strike": 20000, "option_type": "CE", "lotsize": 75},
    {"token": "1003", "symbol": "NIFTY16JAN2520000CE", "name": "NIFTY", "instrumenttype": "OPTIDX",
     "expiry": "2025-01-16", "strike": 20000, "option_type": "CE", "lotsize": 75},
    {"token": "1004", "symbol": "NIFTY09JAN2520000PE", "name": "NIFTY", "instrumenttype": "OPTIDX",
     "expiry": "2025-01-09", "strike": 20000, "option_type": "PE", "lotsize": 75},
]


@pytest.fixture
def directory():
    d = InstrumentDirectory(today=lambda: date(2025, 1, 6))
    d.load_records(RECORDS)
    return d


class TestParseRecord:
    def test_option(self):
        inst = parse_record(RECORDS[2])
        assert inst.kind is InstrumentKind.INDEX_OPT
        assert inst.option_type is OptionType.CALL
        assert inst.expiry == date(2025, 1, 9)
        assert inst.strike == 20000.0
        assert inst.lot_size == 75

    def test_bad_record(self):
        with pytest.raises(DeserializationError):
            parse_record({"symbol": "X"})


class TestInstrumentDirectory:
    def test_satisfies_lookup_capability(self, directory):
        assert isinstance(directory, InstrumentLookup)

    def test_nearest_expiry_on_or_after_today(self, directory):
        assert directory.find_option("nifty", 20000, OptionType.CALL) == ("1002", "NIFTY09JAN2520000CE", 75)

    def test_explicit_expiry(self, directory):
        token, symbol, _ = directory.find_option("NIFTY", 20000, OptionType.CALL, date(2025, 1, 16))
        assert token == "1003"

    def test_missing_option(self, directory):
        with pytest.raises(InstrumentNotFound):
            directory.find_option("NIFTY", 20050, OptionType.CALL)
        with pytest.raises(InstrumentNotFound):
            directory.find_option("NIFTY", 20000, OptionType.PUT, date(2025, 1, 16))

    def test_spot_and_lookup(self, directory):
        assert directory.underlying_token("NIFTY") == "26000"
        assert directory.get("1004").option_type is OptionType.PUT
        assert directory.expiries("NIFTY") == [date(2025, 1, 2), date(2025, 1, 9), date(2025, 1, 16)]
        with pytest.raises(InstrumentNotFound):
            directory.underlying_token("BANKNIFTY")
        with pytest.raises(InstrumentNotFound):
            directory.get("9999")

    @pytest.mark.asyncio
    async def test_refresh_from_file(self, tmp_path):
        path = tmp_path / "instruments.json"
        path.write_text(json.dumps(RECORDS))
        d = InstrumentDirectory(path)
        assert await d.refresh() == 5
        assert d.count == 5

    @pytest.mark.asyncio
    async def test_refresh_missing_file(self, tmp_path):
        with pytest.raises(DataFileNotFound):
            await InstrumentDirectory(tmp_path / "none.json").refresh()

    @pytest.mark.asyncio
    async def test_refresh_without_file_keeps_registered(self, directory):
        assert await directory.refresh() == 5
