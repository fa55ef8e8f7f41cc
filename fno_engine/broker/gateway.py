"""Collaborator capabilities the engine depends on.

The broker wire protocol, instrument-master parsing and holiday data live outside
the engine; these protocols are the only surface it consumes.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import AsyncIterator, Protocol, runtime_checkable

from fno_engine.core.data_types import Bar, Tick
from fno_engine.broker.token_store import TokenSet
from fno_engine.core.types import OptionType, OrderType, Side


@runtime_checkable
class BrokerGateway(Protocol):
    async def authenticate(self) -> TokenSet | None:
        """Log in; return fresh session tokens when the broker issues them."""
        ...

    async def place_order(
        self,
        symbol: str,
        token: str,
        side: Side,
        order_type: OrderType,
        quantity: int,
        price: float | None,
    ) -> str:
        """Place an order and return the broker order id."""
        ...

    async def historical_candles(
        self,
        token: str,
        interval: str,
        start: datetime,
        end: datetime,
    ) -> list[Bar]: ...

    async def ltp(self, token: str) -> float: ...

    async def subscribe(self, tokens: list[str], exchange: str) -> None: ...

    def tick_stream(self) -> AsyncIterator[Tick]: ...


@runtime_checkable
class InstrumentLookup(Protocol):
    async def refresh(self) -> int: ...

    def find_option(
        self,
        underlying: str,
        strike: float,
        option_type: OptionType,
        expiry: date | None = None,
    ) -> tuple[str, str, int]:
        """Return (token, symbol, lot_size)."""
        ...

    def underlying_token(self, name: str) -> str: ...


@runtime_checkable
class TradingCalendar(Protocol):
    def is_trading_day(self, day: date) -> bool: ...


@runtime_checkable
class VixFeed(Protocol):
    async def latest(self) -> float | None: ...


# Broker candle interval names keyed by engine timeframe value
CANDLE_INTERVALS = {
    "1m": "1m",
    "5m": "5m",
    "15m": "15m",
    "1h": "60m",
    "1d": "1D",
}
