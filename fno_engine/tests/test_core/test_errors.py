"""Tests for error classification and exit priority ordering."""

import pytest

from fno_engine.core.errors import (
    ConfigError,
    DailyLossLimit,
    DataGap,
    DuplicateEvent,
    FatalError,
    FreezeQuantityBreach,
    HttpError,
    InsufficientMargin,
    InvalidParameter,
    MarketClosed,
    OrderPlacementFailed,
    OrderRejected,
    OrderValidationError,
    RateLimitExceeded,
    RiskCheckFailed,
    SystemShutdown,
    TokenExpired,
    TokenRefreshFailed,
    TradingError,
    VixSpike,
    WebSocketDisconnected,
)
from fno_engine.core.types import Bias, ExitPriority, ExitReason, OptionType, OrderStatus


class TestErrorClassification:
    @pytest.mark.parametrize("cls", [TokenExpired, DailyLossLimit, VixSpike, MarketClosed])
    def test_requires_exit(self, cls):
        assert cls("x").requires_exit

    @pytest.mark.parametrize("cls", [TokenRefreshFailed, ConfigError, FatalError, SystemShutdown])
    def test_fatal(self, cls):
        err = cls("x")
        assert err.is_fatal
        assert not err.is_recoverable

    @pytest.mark.parametrize("cls", [
        OrderPlacementFailed, HttpError, WebSocketDisconnected, DataGap, RateLimitExceeded,
    ])
    def test_recoverable(self, cls):
        err = cls("x")
        assert err.is_recoverable
        assert not err.is_fatal
        assert not err.requires_exit

    def test_str_includes_code(self):
        assert str(DuplicateEvent("k1")) == "[IDEM_001] k1"

    def test_context_kept(self):
        err = TradingError("boom", order_id="o1")
        assert err.context == {"order_id": "o1"}
        assert err.message == "boom"

    def test_validation_errors_are_rejections(self):
        for cls in (InsufficientMargin, FreezeQuantityBreach, InvalidParameter, MarketClosed):
            err = cls("no", check="c")
            assert isinstance(err, OrderValidationError)
            assert isinstance(err, OrderRejected)
            assert err.check == "c"

    def test_risk_check_carries_gate(self):
        assert RiskCheckFailed("blocked", check="vix").check == "vix"


class TestExitPriority:
    def test_mandatory_exits_win(self):
        for reason in (
            ExitReason.VIX_SPIKE,
            ExitReason.DAILY_LOSS_LIMIT,
            ExitReason.EOD_MANDATORY_EXIT,
            ExitReason.TOKEN_EXPIRY,
            ExitReason.MANUAL_FLATTEN,
            ExitReason.GRACEFUL_SHUTDOWN,
        ):
            assert reason.priority is ExitPriority.MANDATORY

    def test_ordering(self):
        assert ExitReason.STOP_LOSS.priority == 2
        assert ExitReason.TARGET.priority == 3
        assert ExitReason.TRAILING_STOP.priority == 4
        assert ExitReason.ALIGNMENT_LOST.priority == 4
        reasons = [ExitReason.TRAILING_STOP, ExitReason.STOP_LOSS, ExitReason.VIX_SPIKE]
        assert min(reasons, key=lambda r: r.priority) is ExitReason.VIX_SPIKE


class TestEnums:
    def test_bias_option_type(self):
        assert Bias.CALL.option_type is OptionType.CALL
        assert Bias.PUT.option_type is OptionType.PUT
        assert Bias.NO_TRADE.option_type is None

    def test_terminal_statuses(self):
        assert OrderStatus.FILLED.is_terminal
        assert OrderStatus.FAILED.is_terminal
        assert not OrderStatus.SUBMITTED.is_terminal
        assert not OrderStatus.PARTIALLY_FILLED.is_terminal
