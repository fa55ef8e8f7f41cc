"""Tests for trade performance metrics."""

from datetime import timedelta

import pytest

from fno_engine.core.data_types import Trade
from fno_engine.core.types import OptionType, Side
from fno_engine.reporting.performance import compute_metrics, max_drawdown

from conftest import ist


def make_trade(n, net, option_type=OptionType.CALL, reason="TARGET", hold=600.0):
    entry = ist(2025, 1, 6, 10) + timedelta(minutes=n)
    return Trade(
        trade_id=f"t{n}", position_id=f"p{n}", symbol="NIFTY09JAN2520000CE", underlying="NIFTY",
        strike=20000.0, option_type=option_type, side=Side.BUY, quantity=75,
        entry_price=100.0, entry_time=entry, entry_reason="ADX_TREND",
        exit_price=100.0 + net / 75, exit_time=entry + timedelta(seconds=hold), exit_reason=reason,
        gross_pnl=net + 20.0, gross_pnl_pct=0.0, brokerage=20.0, net_pnl=net,
        duration_sec=hold, high_water=110.0, low_water=90.0,
    )


class TestMaxDrawdown:
    def test_empty(self):
        assert max_drawdown([]) == 0.0

    def test_peak_to_trough(self):
        assert max_drawdown([100.0, -50.0, -30.0, 200.0, -10.0]) == pytest.approx(80.0)

    def test_losses_from_start(self):
        assert max_drawdown([-10.0, -20.0]) == pytest.approx(30.0)

    def test_only_gains(self):
        assert max_drawdown([5.0, 10.0]) == 0.0


class TestComputeMetrics:
    def test_no_trades(self):
        assert compute_metrics([]) == {"total_trades": 0, "sharpe": None}

    def test_summary(self):
        trades = [
            make_trade(1, 300.0, hold=600.0),
            make_trade(2, -100.0, OptionType.PUT, reason="STOP_LOSS", hold=300.0),
            make_trade(3, 0.0, reason="EOD_SQUARE_OFF", hold=900.0),
            make_trade(4, 200.0, OptionType.PUT, hold=1200.0),
        ]
        m = compute_metrics(trades)
        assert m["total_trades"] == 4
        assert m["wins"] == 2
        assert m["losses"] == 2
        assert m["win_rate"] == 0.5
        assert m["total_net_pnl"] == pytest.approx(400.0)
        assert m["total_brokerage"] == pytest.approx(80.0)
        assert m["profit_factor"] == pytest.approx(5.0)
        assert m["avg_win"] == pytest.approx(250.0)
        assert m["avg_loss"] == pytest.approx(-50.0)
        assert m["largest_loss"] == pytest.approx(-100.0)
        assert m["max_drawdown"] == pytest.approx(100.0)
        assert m["avg_hold_sec"] == pytest.approx(750.0)
        assert m["max_hold_sec"] == 1200.0
        assert m["ce"]["trades"] == 2
        assert m["pe"]["net_pnl"] == pytest.approx(100.0)
        assert m["exit_reasons"] == {"TARGET": 2, "STOP_LOSS": 1, "EOD_SQUARE_OFF": 1}
        assert m["sharpe"] is None

    def test_no_losses_has_no_profit_factor(self):
        assert compute_metrics([make_trade(1, 50.0)])["profit_factor"] is None
