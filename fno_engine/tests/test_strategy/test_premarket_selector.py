"""Tests for premarket ATM option selection."""

import json
from datetime import date

import pytest

from fno_engine.broker.instrument_directory import InstrumentDirectory
from fno_engine.core.types import Bias
from fno_engine.strategy.bias_scanner import DailyBias
from fno_engine.strategy.premarket_selector import PremarketSelector

from conftest import ist

DAY = date(2025, 1, 6)


def _option(token, name, expiry, strike, option_type, lot):
    return {
        "token": token,
        "symbol": f"{name}{date.fromisoformat(expiry):%d%b%y}{strike}{option_type}".upper(),
        "name": name,
        "instrumenttype": "OPTIDX" if name in ("NIFTY", "BANKNIFTY") else "OPTSTK",
        "expiry": expiry,
        "strike": strike,
        "option_type": option_type,
        "lotsize": lot,
    }


RECORDS = [
    # NIFTY: the 2025-01-07 expiry is one day out and gets skipped
    _option("1001", "NIFTY", "2025-01-07", 23550, "CE", 75),
    _option("1002", "NIFTY", "2025-01-09", 23550, "CE", 75),
    _option("1003", "NIFTY", "2025-01-09", 23550, "PE", 75),
    _option("1004", "NIFTY", "2025-01-09", 23600, "CE", 75),
    _option("2001", "BANKNIFTY", "2025-01-07", 48900, "CE", 30),
    _option("2002", "BANKNIFTY", "2025-01-07", 48900, "PE", 30),
    # RELIANCE: 20-rupee strikes, monthly expiry 24 days out
    _option("3001", "RELIANCE", "2025-01-30", 1280, "CE", 500),
    _option("3002", "RELIANCE", "2025-01-30", 1300, "CE", 500),
    _option("3003", "RELIANCE", "2025-01-30", 1300, "PE", 500),
]


def _bias(underlying, bias, close, token="26000"):
    return DailyBias(
        underlying=underlying, spot_token=token, bias=bias,
        adx=30.0, plus_di=28.0, minus_di=12.0,
        close_price=close, timestamp=ist(2025, 1, 3),
    )


@pytest.fixture
def selector():
    directory = InstrumentDirectory(today=lambda: DAY)
    directory.load_records(RECORDS)
    return PremarketSelector(directory)


class TestAtmStrike:
    def test_index_increments(self, selector):
        atm = selector.select_atm_strike("NIFTY", 23547.5)
        assert atm.strike == 23550.0
        assert atm.distance_from_price == pytest.approx(2.5)
        assert selector.select_atm_strike("BANKNIFTY", 48923.75).strike == 48900.0

    def test_stock_increment_from_listed_strikes(self, selector):
        assert selector.strike_increment("RELIANCE") == 20.0
        assert selector.select_atm_strike("RELIANCE", 1291.0).strike == 1300.0

    def test_unknown_stock_defaults(self, selector):
        assert selector.strike_increment("TCS") == 50.0


class TestExpiry:
    def test_index_skips_expiry_too_close(self, selector):
        assert selector.select_expiry("NIFTY", DAY) == date(2025, 1, 9)

    def test_falls_back_to_farthest(self, selector):
        assert selector.select_expiry("BANKNIFTY", DAY) == date(2025, 1, 7)

    def test_stock_needs_a_week(self, selector):
        assert selector.select_expiry("RELIANCE", DAY) == date(2025, 1, 30)
        assert selector.select_expiry("RELIANCE", date(2025, 1, 25)) == date(2025, 1, 30)

    def test_no_expiries(self, selector):
        assert selector.select_expiry("TCS", DAY) is None


class TestSelect:
    def test_call_bias_pair(self, selector):
        option = selector.select(_bias("NIFTY", Bias.CALL, 23547.5), DAY)
        assert option.expiry == date(2025, 1, 9)
        assert option.atm_strike.strike == 23550.0
        assert (option.ce_token, option.pe_token) == ("1002", "1003")
        assert option.lot_size == 75
        assert option.tradeable() == ("1002", option.ce_symbol)

    def test_put_bias_uses_pe_leg(self, selector):
        option = selector.select(_bias("RELIANCE", Bias.PUT, 1301.0, token="2885"), DAY)
        assert option.tradeable() == ("3003", option.pe_symbol)
        assert option.lot_size == 500

    def test_missing_leg_is_not_tradeable(self, selector):
        option = selector.select(_bias("NIFTY", Bias.PUT, 23610.0), DAY)
        assert option.ce_token == "1004"
        assert option.pe_token is None
        assert option.tradeable() is None

    def test_no_trade_and_missing_strike(self, selector):
        assert selector.select(_bias("NIFTY", Bias.NO_TRADE, 23547.5), DAY) is None
        assert selector.select(_bias("NIFTY", Bias.CALL, 24010.0), DAY) is None

    def test_select_all_and_write(self, selector, tmp_path):
        biases = [
            _bias("NIFTY", Bias.CALL, 23547.5),
            _bias("BANKNIFTY", Bias.PUT, 48923.75, token="26009"),
            _bias("RELIANCE", Bias.NO_TRADE, 1300.0, token="2885"),
        ]
        options = selector.select_all(biases, DAY)
        assert [o.underlying for o in options] == ["NIFTY", "BANKNIFTY"]

        path = selector.write(options, tmp_path, DAY)
        assert path.name == "preselected_20250106.json"
        data = json.loads(path.read_text())
        assert data["count"] == 2
        assert data["options"][1]["bias"] == "PE"
        assert data["options"][1]["expiry"] == "2025-01-07"
        assert data["options"][0]["atm_strike"]["strike"] == 23550.0
