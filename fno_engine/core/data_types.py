"""Dataclasses for engine data structures.

Bars, events and trades round-trip through ``to_dict``/``from_dict`` as JSON lines;
timestamps are timezone-aware UTC and serialized as ISO-8601 plus epoch milliseconds.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from fno_engine.core.types import (
    Bias,
    EventKind,
    InstrumentKind,
    OptionType,
    OrderStatus,
    PositionStatus,
    Side,
)


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(ts: datetime) -> int:
    return (ts - _EPOCH) // timedelta(milliseconds=1)


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _fmt_ts(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


@dataclass(frozen=True)
class Bar:
    """OHLCV bar keyed by its boundary timestamp."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int
    complete: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": _fmt_ts(self.timestamp),
            "timestamp_ms": to_epoch_ms(self.timestamp),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "complete": self.complete,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Bar:
        return cls(
            timestamp=_parse_ts(d["timestamp"]),
            open=d["open"],
            high=d["high"],
            low=d["low"],
            close=d["close"],
            volume=d["volume"],
            complete=d.get("complete", True),
        )


@dataclass(frozen=True)
class Tick:
    """Last-traded-price update from the market data feed."""

    symbol: str
    token: str
    last_price: float
    timestamp: datetime
    volume: int = 0
    bid: float | None = None
    ask: float | None = None


@dataclass(frozen=True)
class Instrument:
    """Tradable contract as published by the instrument directory."""

    token: str
    symbol: str
    underlying: str
    kind: InstrumentKind
    lot_size: int = 1
    tick_size: float = 0.05
    exchange_segment: str = "NFO"
    expiry: date | None = None
    strike: float | None = None
    option_type: OptionType | None = None


@dataclass(frozen=True)
class OrderIntent:
    """Desired order. Unique by idempotency key."""

    intent_id: str
    symbol: str
    token: str
    side: Side
    quantity: int
    initial_limit_price: float
    idempotency_key: str


@dataclass
class Order:
    """Tracked order state. Status only moves forward until terminal."""

    order_id: str
    symbol: str
    token: str
    side: Side
    quantity: int
    initial_limit_price: float
    idempotency_key: str
    status: OrderStatus = OrderStatus.PENDING
    broker_order_id: str | None = None
    attempts: int = 0
    current_limit_price: float = 0.0
    fill_price: float | None = None
    fill_quantity: int = 0
    fill_time: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    last_error: str | None = None

    @classmethod
    def from_intent(cls, order_id: str, intent: OrderIntent, now: datetime) -> Order:
        return cls(
            order_id=order_id,
            symbol=intent.symbol,
            token=intent.token,
            side=intent.side,
            quantity=intent.quantity,
            initial_limit_price=intent.initial_limit_price,
            idempotency_key=intent.idempotency_key,
            current_limit_price=intent.initial_limit_price,
            created_at=now,
            updated_at=now,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "symbol": self.symbol,
            "token": self.token,
            "side": self.side.value,
            "quantity": self.quantity,
            "initial_limit_price": self.initial_limit_price,
            "idempotency_key": self.idempotency_key,
            "status": self.status.value,
            "broker_order_id": self.broker_order_id,
            "attempts": self.attempts,
            "current_limit_price": self.current_limit_price,
            "fill_price": self.fill_price,
            "fill_quantity": self.fill_quantity,
            "fill_time": _fmt_ts(self.fill_time),
            "created_at": _fmt_ts(self.created_at),
            "updated_at": _fmt_ts(self.updated_at),
            "last_error": self.last_error,
        }


@dataclass
class Position:
    """Live option position. Mutated on every price refresh until closed."""

    position_id: str
    symbol: str
    underlying: str
    strike: float
    option_type: OptionType
    quantity: int
    entry_price: float
    entry_time: datetime
    stop_loss: float
    side: Side = Side.BUY
    token: str = ""
    underlying_entry: float = 0.0
    target: float | None = None
    trail_stop: float | None = None
    trail_active: bool = False
    current_price: float = 0.0
    pnl: float = 0.0
    pnl_pct: float = 0.0
    status: PositionStatus = PositionStatus.OPEN
    entry_reason: str = ""
    idempotency_key: str = ""
    order_id: str | None = None
    high_price: float = 0.0
    low_price: float = 0.0
    vix_at_entry: float | None = None

    def __post_init__(self) -> None:
        if self.current_price == 0.0:
            self.current_price = self.entry_price
        if self.high_price == 0.0:
            self.high_price = self.entry_price
        if self.low_price == 0.0:
            self.low_price = self.entry_price

    def to_dict(self) -> dict[str, Any]:
        return {
            "position_id": self.position_id,
            "symbol": self.symbol,
            "underlying": self.underlying,
            "strike": self.strike,
            "option_type": self.option_type.value,
            "side": self.side.value,
            "token": self.token,
            "quantity": self.quantity,
            "entry_price": self.entry_price,
            "entry_time": _fmt_ts(self.entry_time),
            "underlying_entry": self.underlying_entry,
            "stop_loss": self.stop_loss,
            "target": self.target,
            "trail_stop": self.trail_stop,
            "trail_active": self.trail_active,
            "current_price": self.current_price,
            "pnl": self.pnl,
            "pnl_pct": self.pnl_pct,
            "status": self.status.value,
            "entry_reason": self.entry_reason,
            "idempotency_key": self.idempotency_key,
            "order_id": self.order_id,
            "high_price": self.high_price,
            "low_price": self.low_price,
            "vix_at_entry": self.vix_at_entry,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Position:
        return cls(
            position_id=d["position_id"],
            symbol=d["symbol"],
            underlying=d["underlying"],
            strike=d["strike"],
            option_type=OptionType(d["option_type"]),
            side=Side(d.get("side", Side.BUY.value)),
            token=d.get("token", ""),
            quantity=d["quantity"],
            entry_price=d["entry_price"],
            entry_time=_parse_ts(d["entry_time"]),
            underlying_entry=d.get("underlying_entry", 0.0),
            stop_loss=d["stop_loss"],
            target=d.get("target"),
            trail_stop=d.get("trail_stop"),
            trail_active=d.get("trail_active", False),
            current_price=d.get("current_price", 0.0),
            pnl=d.get("pnl", 0.0),
            pnl_pct=d.get("pnl_pct", 0.0),
            status=PositionStatus(d.get("status", PositionStatus.OPEN.value)),
            entry_reason=d.get("entry_reason", ""),
            idempotency_key=d.get("idempotency_key", ""),
            order_id=d.get("order_id"),
            high_price=d.get("high_price", 0.0),
            low_price=d.get("low_price", 0.0),
            vix_at_entry=d.get("vix_at_entry"),
        )


@dataclass(frozen=True)
class Trade:
    """Terminal record of a closed position."""

    trade_id: str
    position_id: str
    symbol: str
    underlying: str
    strike: float
    option_type: OptionType
    side: Side
    quantity: int
    entry_price: float
    entry_time: datetime
    entry_reason: str
    exit_price: float
    exit_time: datetime
    exit_reason: str
    gross_pnl: float
    gross_pnl_pct: float
    brokerage: float
    net_pnl: float
    duration_sec: float
    high_water: float
    low_water: float
    secondary_reasons: tuple[str, ...] = ()
    vix_entry: float | None = None
    vix_exit: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "position_id": self.position_id,
            "symbol": self.symbol,
            "underlying": self.underlying,
            "strike": self.strike,
            "option_type": self.option_type.value,
            "side": self.side.value,
            "quantity": self.quantity,
            "entry_price": self.entry_price,
            "entry_time": _fmt_ts(self.entry_time),
            "entry_reason": self.entry_reason,
            "exit_price": self.exit_price,
            "exit_time": _fmt_ts(self.exit_time),
            "exit_reason": self.exit_reason,
            "secondary_reasons": list(self.secondary_reasons),
            "gross_pnl": self.gross_pnl,
            "gross_pnl_pct": self.gross_pnl_pct,
            "brokerage": self.brokerage,
            "net_pnl": self.net_pnl,
            "duration_sec": self.duration_sec,
            "high_water": self.high_water,
            "low_water": self.low_water,
            "vix_entry": self.vix_entry,
            "vix_exit": self.vix_exit,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Trade:
        return cls(
            trade_id=d["trade_id"],
            position_id=d["position_id"],
            symbol=d["symbol"],
            underlying=d["underlying"],
            strike=d["strike"],
            option_type=OptionType(d["option_type"]),
            side=Side(d["side"]),
            quantity=d["quantity"],
            entry_price=d["entry_price"],
            entry_time=_parse_ts(d["entry_time"]),
            entry_reason=d["entry_reason"],
            exit_price=d["exit_price"],
            exit_time=_parse_ts(d["exit_time"]),
            exit_reason=d["exit_reason"],
            secondary_reasons=tuple(d.get("secondary_reasons", ())),
            gross_pnl=d["gross_pnl"],
            gross_pnl_pct=d["gross_pnl_pct"],
            brokerage=d["brokerage"],
            net_pnl=d["net_pnl"],
            duration_sec=d["duration_sec"],
            high_water=d["high_water"],
            low_water=d["low_water"],
            vix_entry=d.get("vix_entry"),
            vix_exit=d.get("vix_exit"),
        )


@dataclass(frozen=True)
class EntrySignal:
    """Produced by the strategy when every entry filter passes."""

    bias: Bias
    underlying: str
    underlying_ltp: float
    strike: float
    option_type: OptionType
    reason: str
    timestamp: datetime
    side: Side = Side.BUY
    confidence: float = 0.8


@dataclass(frozen=True)
class Event:
    """Event bus message."""

    kind: EventKind
    timestamp: datetime
    idempotency_key: str
    payload: dict[str, Any] = field(default_factory=dict)
    source: str = ""

    @classmethod
    def create(
        cls,
        kind: EventKind,
        payload: dict[str, Any] | None = None,
        source: str = "",
        idempotency_key: str | None = None,
        timestamp: datetime | None = None,
    ) -> Event:
        ts = timestamp or utc_now()
        if idempotency_key is None:
            idempotency_key = f"{kind.value}:{to_epoch_ms(ts)}:{uuid.uuid4()}"
        return cls(
            kind=kind,
            timestamp=ts,
            idempotency_key=idempotency_key,
            payload=payload or {},
            source=source,
        )

    @property
    def timestamp_ms(self) -> int:
        return to_epoch_ms(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "timestamp": _fmt_ts(self.timestamp),
            "timestamp_ms": self.timestamp_ms,
            "idempotency_key": self.idempotency_key,
            "source": self.source,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Event:
        return cls(
            kind=EventKind(d["kind"]),
            timestamp=_parse_ts(d["timestamp"]),
            idempotency_key=d["idempotency_key"],
            payload=d.get("payload", {}),
            source=d.get("source", ""),
        )
