"""Tests for EngineConfig parsing and validation."""

from datetime import time

import pytest

from fno_engine.config.config_manager import ConfigManager
from fno_engine.config.engine_config import EngineConfig, parse_time
from fno_engine.core.errors import ConfigError

from conftest import make_config


@pytest.fixture(autouse=True)
def reset_singleton():
    ConfigManager.reset()
    yield
    ConfigManager.reset()


class TestParseTime:
    def test_formats(self):
        assert parse_time("09:15") == time(9, 15)
        assert parse_time("15:20:30") == time(15, 20, 30)
        assert parse_time(time(10, 0)) == time(10, 0)

    @pytest.mark.parametrize("value", ["", "9", "aa:bb", "25:00", None])
    def test_invalid(self, value):
        with pytest.raises(ConfigError):
            parse_time(value)


class TestEngineConfig:
    def test_from_packaged_files(self):
        cm = ConfigManager()
        cm.load(profile="paper")
        config = EngineConfig.from_manager(cm)
        assert config.underlying == "NIFTY"
        assert config.entry_window_start == time(10, 0)
        assert config.eod_exit_time == time(15, 20)
        assert config.order_retry_steps_pct == (0.5, 1.0, 1.5)
        assert config.vix_mult_anchors["vix_20"] == 0.75
        assert config.log_level == "debug"

    def test_unknown_keys_ignored(self):
        config = EngineConfig.from_dict({"risk": {"max_positions": 2, "bogus": 1}, "extra": 5})
        assert config.max_positions == 2

    def test_defaults_valid(self):
        EngineConfig().validate()

    @pytest.mark.parametrize("overrides", [
        {"entry_window_start": time(14, 30), "entry_window_end": time(10, 0)},
        {"entry_window_start": time(9, 0)},
        {"eod_exit_time": time(15, 45)},
        {"option_stop_loss_pct": 0.0},
        {"trail_gap_pct": 1.0},
        {"vix_spike_threshold": 20.0, "vix_resume_threshold": 20.0},
        {"daily_adx_period": 1},
        {"max_positions": 0},
        {"order_retry_backoffs_sec": (1.0, -2.0)},
        {"lot_size": {"nifty": 0}},
        {"start_capital": 0.0},
        {"weekly_expiry_weekday": 7},
    ])
    def test_validation_failures(self, overrides):
        with pytest.raises(ConfigError):
            make_config(**overrides).validate()

    def test_from_dict_validates(self):
        with pytest.raises(ConfigError):
            EngineConfig.from_dict({"session": {"eod_exit_time": "16:00"}})

    def test_lot_and_freeze_lookup(self):
        config = EngineConfig()
        assert config.lot_size_for("BANKNIFTY") == 35
        assert config.freeze_quantity_for("banknifty") == 900
        # unknown underlyings fall back to NIFTY values
        assert config.lot_size_for("MIDCPNIFTY") == 75

    def test_to_dict_is_json_friendly(self):
        d = EngineConfig().to_dict()
        assert d["market_open_time"] == "09:15:00"
        assert d["order_retry_steps_pct"] == [0.5, 1.0, 1.5]
