"""TickBuffer — bounded most-recent tick history per symbol.

One RingBuffer per symbol; overflow evicts the oldest tick. In-memory only.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

from fno_engine.core.data_types import Tick
from fno_engine.core.ring_buffer import RingBuffer


class TickBuffer:
    def __init__(self, capacity: int = 1000) -> None:
        self._capacity = capacity
        self._buffers: dict[str, RingBuffer] = {}
        self._tokens: dict[str, str] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def symbols(self) -> list[str]:
        return list(self._buffers)

    def push(self, tick: Tick) -> None:
        buf = self._buffers.get(tick.symbol)
        if buf is None:
            buf = RingBuffer(self._capacity)
            self._buffers[tick.symbol] = buf
        self._tokens[tick.symbol] = tick.token
        buf.push(
            _to_ns(tick.timestamp),
            tick.last_price,
            tick.volume,
            tick.bid if tick.bid is not None else math.nan,
            tick.ask if tick.ask is not None else math.nan,
        )

    def count(self, symbol: str) -> int:
        buf = self._buffers.get(symbol)
        return buf.count if buf is not None else 0

    def last(self, symbol: str) -> Tick | None:
        buf = self._buffers.get(symbol)
        if buf is None:
            return None
        rec = buf.latest()
        return self._to_tick(symbol, rec) if rec is not None else None

    def recent(self, symbol: str, k: int) -> list[Tick]:
        """Return up to k most recent ticks, oldest first."""
        buf = self._buffers.get(symbol)
        if buf is None:
            return []
        return [self._to_tick(symbol, rec) for rec in buf.last_n(k)]

    def all(self, symbol: str) -> list[Tick]:
        buf = self._buffers.get(symbol)
        if buf is None:
            return []
        return [self._to_tick(symbol, rec) for rec in buf.to_array()]

    def clear(self, symbol: str) -> None:
        buf = self._buffers.get(symbol)
        if buf is not None:
            buf.clear()

    def clear_all(self) -> None:
        for buf in self._buffers.values():
            buf.clear()

    def _to_tick(self, symbol: str, rec) -> Tick:
        bid = float(rec["bid"])
        ask = float(rec["ask"])
        return Tick(
            symbol=symbol,
            token=self._tokens.get(symbol, ""),
            last_price=float(rec["price"]),
            volume=int(rec["volume"]),
            bid=None if math.isnan(bid) else bid,
            ask=None if math.isnan(ask) else ask,
            timestamp=_from_ns(int(rec["timestamp_ns"])),
        )


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_ns(ts: datetime) -> int:
    delta = ts - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000


def _from_ns(ns: int) -> datetime:
    seconds, rem = divmod(ns, 1_000_000_000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=rem // 1_000)
