"""EngineConfig — immutable, validated engine settings.

Built once at startup from the merged TOML (see ConfigManager) and passed by
reference to every component. TOML sections are organizational only: each key
inside a section maps to the field of the same name.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import time
from typing import Any

from fno_engine.config.config_manager import ConfigManager
from fno_engine.core.errors import ConfigError

logger = logging.getLogger(__name__)

_TIME_FIELDS = (
    "market_open_time",
    "market_close_time",
    "entry_window_start",
    "entry_window_end",
    "eod_exit_time",
)

_TUPLE_FIELDS = ("order_retry_steps_pct", "order_retry_backoffs_sec")


def parse_time(value: str | time) -> time:
    """Parse 'HH:MM' or 'HH:MM:SS'."""
    if isinstance(value, time):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Invalid time value: {value!r}")
    parts = value.strip().split(":")
    try:
        numbers = [int(p) for p in parts]
        if len(numbers) == 2:
            return time(numbers[0], numbers[1])
        if len(numbers) == 3:
            return time(numbers[0], numbers[1], numbers[2])
    except ValueError as e:
        raise ConfigError(f"Invalid time value: {value!r}") from e
    raise ConfigError(f"Invalid time value: {value!r}")


@dataclass(frozen=True)
class EngineConfig:
    # session
    underlying: str = "NIFTY"
    exchange: str = "NSE"
    timezone: str = "Asia/Kolkata"
    market_open_time: time = time(9, 15)
    market_close_time: time = time(15, 30)
    entry_window_start: time = time(10, 0)
    entry_window_end: time = time(14, 30)
    eod_exit_time: time = time(15, 20)
    session_open_delay_min: int = 15
    weekly_expiry_weekday: int = 3
    holidays_file: str = ""

    # exits
    option_stop_loss_pct: float = 0.30
    use_trailing_stop: bool = True
    trail_activate_pnl_pct: float = 10.0
    trail_gap_pct: float = 0.05
    option_target_pct: float = 0.0

    # risk
    max_positions: int = 1
    daily_loss_limit_pct: float = 3.0
    consecutive_loss_limit: int = 3
    start_capital: float = 1_000_000.0

    # vix
    vix_threshold: float = 22.0
    vix_spike_threshold: float = 25.0
    vix_resume_threshold: float = 20.0
    vix_symbol: str = "INDIA VIX"

    # sizing
    base_position_size_pct: float = 0.01
    vix_mult_anchors: dict[str, float] = field(default_factory=lambda: {
        "vix_12_or_below": 1.0,
        "vix_20": 0.75,
        "vix_30": 0.5,
        "vix_30_or_above": 0.25,
    })
    dte_mult: dict[str, float] = field(default_factory=lambda: {
        "gte_5_days": 1.0,
        "days_2_to_4": 0.75,
        "day_1": 0.5,
    })

    # orders
    order_retry_steps_pct: tuple[float, ...] = (0.5, 1.0, 1.5)
    order_max_retries: int = 3
    order_retry_backoffs_sec: tuple[float, ...] = (1.0, 2.0, 4.0)

    # limits
    freeze_quantity: dict[str, int] = field(default_factory=lambda: {
        "nifty": 1800,
        "banknifty": 900,
        "finnifty": 1800,
    })
    lot_size: dict[str, int] = field(default_factory=lambda: {
        "nifty": 75,
        "banknifty": 35,
        "finnifty": 65,
    })
    tick_size: float = 0.05
    price_band_pct: float = 20.0
    margin_multiplier: float = 1.2

    # strategy
    daily_adx_period: int = 14
    daily_adx_threshold: float = 25.0
    hourly_adx_period: int = 14
    hourly_adx_threshold: float = 25.0
    rsi_period: int = 14
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    ema_period: int = 20
    strike_increment: float = 50.0
    daily_lookback_bars: int = 60
    hourly_lookback_bars: int = 60

    # data
    data_dir: str = "data"
    daily_bars_memory: int = 100
    hourly_bars_memory: int = 500
    tick_buffer_capacity: int = 1000
    data_gap_threshold_sec: float = 60.0
    recovery_timeout_sec: float = 30.0
    bar_ready_grace_sec: float = 5.0
    daily_sync_lookback_days: int = 120
    hourly_sync_lookback_days: int = 30

    # broker
    enable_paper_trading: bool = True
    paper_slippage_bps: float = 5.0
    brokerage_pct: float = 0.0003
    brokerage_floor: float = 20.0
    instruments_file: str = ""

    # websocket
    ws_reconnect_backoff_sec: float = 5.0
    ws_max_reconnects_per_minute: int = 5

    # tokens
    token_file: str = "tokens.json"
    token_expiry_warning_min: int = 30
    token_grace_to_flatten_sec: float = 300.0

    # rate limits (requests per second)
    rate_limit_orders: float = 10.0
    rate_limit_market_data: float = 10.0
    rate_limit_historical: float = 3.0

    # engine
    cycle_interval_sec: float = 60.0

    # logging
    log_level: str = "info"
    log_rotation: str = "daily"
    log_retention_days: int = 30
    log_dir: str = "logs"

    # server
    api_host: str = "127.0.0.1"
    api_port: int = 8015

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> EngineConfig:
        """Build from a merged TOML dict (sections of key = value) and validate."""
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for section, body in raw.items():
            if not isinstance(body, dict):
                if section in known:
                    values[section] = body
                else:
                    logger.warning("Unknown config key: %s", section)
                continue
            for key, value in body.items():
                if key in known:
                    values[key] = value
                else:
                    logger.warning("Unknown config key: %s.%s", section, key)

        for name in _TIME_FIELDS:
            if name in values:
                values[name] = parse_time(values[name])
        for name in _TUPLE_FIELDS:
            if name in values:
                values[name] = tuple(float(v) for v in values[name])

        try:
            config = cls(**values)
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
        config.validate()
        return config

    @classmethod
    def from_manager(cls, manager: ConfigManager) -> EngineConfig:
        return cls.from_dict(manager.raw)

    def validate(self) -> None:
        """Raise ConfigError on the first inconsistent setting."""
        if not (self.entry_window_start < self.entry_window_end):
            raise ConfigError("entry_window_start must be before entry_window_end")
        if not (self.market_open_time <= self.entry_window_start):
            raise ConfigError("entry window must open after market open")
        if not (self.entry_window_end <= self.eod_exit_time <= self.market_close_time):
            raise ConfigError("require entry_window_end <= eod_exit_time <= market_close_time")
        if not (0 < self.option_stop_loss_pct <= 1):
            raise ConfigError("option_stop_loss_pct must be in (0, 1]")
        if not (0 <= self.trail_gap_pct < 1):
            raise ConfigError("trail_gap_pct must be in [0, 1)")
        if self.option_target_pct < 0:
            raise ConfigError("option_target_pct must be >= 0")
        if self.daily_loss_limit_pct <= 0:
            raise ConfigError("daily_loss_limit_pct must be positive")
        if self.vix_spike_threshold <= self.vix_resume_threshold:
            raise ConfigError(
                f"vix_spike_threshold ({self.vix_spike_threshold}) must exceed "
                f"vix_resume_threshold ({self.vix_resume_threshold})"
            )
        if self.daily_adx_period < 2 or self.hourly_adx_period < 2:
            raise ConfigError("ADX periods must be >= 2")
        if self.rsi_period < 1 or self.ema_period < 1:
            raise ConfigError("rsi_period and ema_period must be >= 1")
        if self.max_positions < 1:
            raise ConfigError("max_positions must be >= 1")
        if self.consecutive_loss_limit < 1:
            raise ConfigError("consecutive_loss_limit must be >= 1")
        if self.order_max_retries < 0:
            raise ConfigError("order_max_retries must be >= 0")
        if any(v < 0 for v in self.order_retry_backoffs_sec + self.order_retry_steps_pct):
            raise ConfigError("order retry ladders must be non-negative")
        if any(v <= 0 for v in self.lot_size.values()):
            raise ConfigError("lot sizes must be positive")
        if any(v <= 0 for v in self.freeze_quantity.values()):
            raise ConfigError("freeze quantities must be positive")
        if self.tick_size <= 0 or self.strike_increment <= 0:
            raise ConfigError("tick_size and strike_increment must be positive")
        if self.start_capital <= 0:
            raise ConfigError("start_capital must be positive")
        if not 0 <= self.weekly_expiry_weekday <= 6:
            raise ConfigError("weekly_expiry_weekday must be 0 (Mon) .. 6 (Sun)")

    def lot_size_for(self, underlying: str) -> int:
        key = underlying.lower()
        return self.lot_size.get(key, self.lot_size.get("nifty", 75))

    def freeze_quantity_for(self, underlying: str) -> int:
        key = underlying.lower()
        return self.freeze_quantity.get(key, self.freeze_quantity.get("nifty", 1800))

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        for name in _TIME_FIELDS:
            d[name] = d[name].strftime("%H:%M:%S")
        for name in _TUPLE_FIELDS:
            d[name] = list(d[name])
        return d
