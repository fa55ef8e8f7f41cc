"""Tests for the pre-trade order checks."""

import pytest

from fno_engine.core.data_types import Instrument
from fno_engine.core.errors import (
    FreezeQuantityBreach,
    InsufficientMargin,
    InvalidParameter,
    MarketClosed,
    PriceBandBreach,
)
from fno_engine.core.types import InstrumentKind, OptionType, Side
from fno_engine.execution.order_validator import OrderValidator
from fno_engine.session.session_clock import SessionClock
from fno_engine.session.trading_calendar import HolidayCalendar

from conftest import ist, make_config

OPTION = Instrument(
    token="OPT-CE-20000",
    symbol="NIFTY09JAN2520000CE",
    underlying="NIFTY",
    kind=InstrumentKind.INDEX_OPT,
    lot_size=75,
    strike=20000.0,
    option_type=OptionType.CALL,
)


@pytest.fixture
def validator():
    return OrderValidator(make_config())


def _validate(validator, quantity=75, price=100.0, symbol=OPTION.symbol, balance=1_000_000.0,
              reference=100.0, now=None):
    validator.validate(symbol, quantity, price, Side.BUY, OPTION, balance, reference, now)


class TestOrderValidator:
    def test_valid_order(self, validator):
        _validate(validator)

    def test_freeze_quantity(self, validator):
        with pytest.raises(FreezeQuantityBreach) as exc:
            _validate(validator, quantity=1875)
        assert exc.value.check == "freeze_quantity"

    def test_freeze_limit_is_inclusive(self, validator):
        _validate(validator, quantity=1800, price=10.0, reference=10.0)

    def test_lot_multiple(self, validator):
        with pytest.raises(InvalidParameter) as exc:
            _validate(validator, quantity=100)
        assert exc.value.check == "lot_size"

    @pytest.mark.parametrize("price", [100.0, 100.05, 99.95, 0.05, 123.45])
    def test_tick_multiples_accepted(self, validator, price):
        validator.check_tick_size(price, 0.05)

    def test_off_tick_price(self, validator):
        with pytest.raises(InvalidParameter) as exc:
            _validate(validator, price=100.02)
        assert exc.value.check == "tick_size"

    def test_price_band(self, validator):
        with pytest.raises(PriceBandBreach) as exc:
            _validate(validator, price=125.0, reference=100.0)
        assert exc.value.check == "price_band"
        with pytest.raises(PriceBandBreach):
            _validate(validator, price=75.0, reference=100.0)
        _validate(validator, price=120.0, reference=100.0)

    def test_no_reference_skips_band(self, validator):
        _validate(validator, price=500.0, reference=None)

    def test_margin(self, validator):
        # 75 × 100 × 1.2 = 9000
        _validate(validator, balance=9001.0)
        with pytest.raises(InsufficientMargin) as exc:
            _validate(validator, balance=8999.0)
        assert exc.value.check == "margin"

    def test_symbol_mismatch(self, validator):
        with pytest.raises(InvalidParameter) as exc:
            _validate(validator, symbol="NIFTY09JAN2520000PE")
        assert exc.value.check == "symbol"

    def test_market_hours(self):
        session = SessionClock(make_config(), HolidayCalendar.load())
        validator = OrderValidator(make_config(), session)
        _validate(validator, now=ist(2025, 1, 6, 11))
        with pytest.raises(MarketClosed) as exc:
            _validate(validator, now=ist(2025, 1, 6, 16))
        assert exc.value.check == "market_hours"
        assert exc.value.requires_exit

    def test_zero_quantity(self, validator):
        with pytest.raises(InvalidParameter) as exc:
            _validate(validator, quantity=0)
        assert exc.value.check == "quantity_positive"

    def test_non_positive_price(self, validator):
        with pytest.raises(InvalidParameter) as exc:
            validator.validate(OPTION.symbol, 75, 0.0, Side.BUY, OPTION, 1e6, None)
        assert exc.value.check == "price_positive"

    def test_first_failure_wins(self, validator):
        # breaches freeze, lot size and tick size; freeze is checked first
        with pytest.raises(FreezeQuantityBreach):
            _validate(validator, quantity=1901, price=100.02)
