"""Tests for ConfigManager."""

import pytest

from fno_engine.config.config_manager import ConfigManager


@pytest.fixture(autouse=True)
def reset_singleton():
    ConfigManager.reset()
    yield
    ConfigManager.reset()


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestConfigManager:
    def test_packaged_base_load(self):
        cm = ConfigManager()
        cm.load()
        assert cm.get("session.underlying") == "NIFTY"
        assert cm.get("broker.enable_paper_trading") is True
        assert cm.get("limits.lot_size.nifty") == 75

    def test_profile_override(self):
        cm = ConfigManager()
        cm.load(profile="live")
        # profile_live.toml tightens the loss limit and disables paper trading
        assert cm.get("risk.daily_loss_limit_pct") == 2.0
        assert cm.get("broker.enable_paper_trading") is False
        # untouched base keys survive the merge
        assert cm.get("risk.consecutive_loss_limit") == 3
        assert cm.profile == "live"

    def test_missing_profile(self):
        cm = ConfigManager()
        with pytest.raises(FileNotFoundError):
            cm.load(profile="nonexistent")

    def test_local_override_wins(self, tmp_path):
        base = _write(tmp_path / "base.toml", '[risk]\nmax_positions = 1\nstart_capital = 500000.0\n')
        _write(tmp_path / "profiles" / "profile_paper.toml", "[risk]\nmax_positions = 2\n")
        local = _write(tmp_path / "site.toml", "[risk]\nmax_positions = 3\n")
        cm = ConfigManager()
        cm.load(base, profile="paper", local_path=local)
        assert cm.get("risk.max_positions") == 3
        assert cm.get("risk.start_capital") == 500000.0

    def test_default_value(self):
        cm = ConfigManager()
        cm.load()
        assert cm.get("nonexistent.key", "fallback") == "fallback"

    def test_singleton(self):
        assert ConfigManager() is ConfigManager()

    def test_set_survives_reload(self):
        cm = ConfigManager()
        cm.load(profile="paper")
        cm.set("risk.max_positions", 2)
        cm.reload()
        assert cm.get("risk.max_positions") == 2

    def test_reload_refused_in_live(self):
        cm = ConfigManager()
        cm.load(profile="live")
        with pytest.raises(RuntimeError):
            cm.reload()
