"""Shared fixtures for F&O engine tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from fno_engine.broker.paper_broker import PaperBroker
from fno_engine.config.config_manager import ConfigManager
from fno_engine.config.engine_config import EngineConfig
from fno_engine.core.data_types import Bar, Tick
from fno_engine.core.event_bus import EventBus
from fno_engine.core.types import EventKind

IST_OFFSET = timedelta(hours=5, minutes=30)


def ist(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    """Exchange-local wall time as an aware UTC datetime."""
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc) - IST_OFFSET


def make_config(**overrides) -> EngineConfig:
    return replace(EngineConfig(), **overrides)


def make_bar(ts: datetime, close: float, spread: float = 1.0, volume: int = 100, **overrides) -> Bar:
    fields = {
        "timestamp": ts,
        "open": close,
        "high": close + spread,
        "low": close - spread,
        "close": close,
        "volume": volume,
    }
    fields.update(overrides)
    return Bar(**fields)


def zigzag_uptrend(n: int, end: datetime, step: timedelta, base: float = 20000.0) -> list[Bar]:
    """Rising two-bar zigzag ending at ``end``.

    Up bars make new highs; pull-back bars stay inside the prior bar's range, so
    -DM is always zero (ADX 100, +DI > -DI) while RSI stays in the 60s.
    """
    bars = []
    start = end - step * (n - 1)
    for i in range(n):
        b = base + 20.0 * (i // 2)
        ts = start + step * i
        if i % 2 == 0:
            bars.append(Bar(ts, b + 1.0, b + 30.0, b, b + 30.0, 1000))
        else:
            bars.append(Bar(ts, b + 28.0, b + 28.0, b + 1.0, b + 1.0, 800))
    return bars


def zigzag_downtrend(n: int, end: datetime, step: timedelta, base: float = 20000.0) -> list[Bar]:
    """Mirror image of zigzag_uptrend: +DM always zero, RSI in the 30s."""
    bars = []
    start = end - step * (n - 1)
    for i in range(n):
        b = base - 20.0 * (i // 2)
        ts = start + step * i
        if i % 2 == 0:
            bars.append(Bar(ts, b - 1.0, b, b - 30.0, b - 30.0, 1000))
        else:
            bars.append(Bar(ts, b - 28.0, b - 1.0, b - 28.0, b - 1.0, 800))
    return bars


def make_tick(ts: datetime, price: float, symbol: str = "NIFTY", token: str = "26000", volume: int = 10) -> Tick:
    return Tick(symbol=symbol, token=token, last_price=price, timestamp=ts, volume=volume)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class EventRecorder:
    """Collects every published event of the subscribed kinds."""

    def __init__(self, bus: EventBus, kinds=None) -> None:
        self.events = []
        for kind in kinds or list(EventKind):
            bus.subscribe(kind, self.events.append)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]

    def of(self, kind: EventKind) -> list:
        return [e for e in self.events if e.kind is kind]


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def config(tmp_path):
    return make_config(data_dir=str(tmp_path), log_dir=str(tmp_path / "logs"))


@pytest.fixture
def config_manager():
    ConfigManager.reset()
    cm = ConfigManager()
    yield cm
    ConfigManager.reset()


@pytest.fixture
def clock():
    # Monday 2025-01-06, 11:00:30 IST
    return FakeClock(ist(2025, 1, 6, 11, 0, 30))


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def paper(clock):
    return PaperBroker(slippage_bps=0.0, clock=clock)
