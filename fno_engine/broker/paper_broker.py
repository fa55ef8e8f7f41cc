"""Paper Broker — in-process BrokerGateway for paper trading and tests.

Orders fill instantly at the limit price adjusted for slippage:
  BUY  fills at price × (1 + bps/10⁴)
  SELL fills at price × (1 − bps/10⁴)

LTPs are scripted with set_ltp(), candles preloaded with load_candles(), and
ticks pushed with push_tick() come out of tick_stream() in order.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable

from fno_engine.broker.token_store import TokenSet
from fno_engine.core.data_types import Bar, Tick, utc_now
from fno_engine.core.errors import BrokerApiError, MissingData, TradingError
from fno_engine.core.types import OrderType, Side

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaperFill:
    order_id: str
    symbol: str
    token: str
    side: Side
    quantity: int
    price: float
    timestamp: datetime


class PaperBroker:
    """Simulated gateway with instant slippage fills."""

    def __init__(
        self,
        slippage_bps: float = 0.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._slippage_bps = slippage_bps
        self._clock = clock
        self._authenticated = False
        self._ltp: dict[str, float] = {}
        self._candles: dict[tuple[str, str], list[Bar]] = defaultdict(list)
        self._fills: dict[str, PaperFill] = {}
        self._subscriptions: set[str] = set()
        self._ticks: asyncio.Queue[Tick | None] = asyncio.Queue()
        self._fail_next = 0
        self._fail_error: TradingError | None = None
        self._vix: float | None = None
        self.place_calls = 0

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    @property
    def fills(self) -> list[PaperFill]:
        return list(self._fills.values())

    @property
    def subscriptions(self) -> set[str]:
        return set(self._subscriptions)

    # --- Scripting ---

    def set_ltp(self, token: str, price: float) -> None:
        self._ltp[token] = price

    def load_candles(self, token: str, interval: str, bars: list[Bar]) -> None:
        self._candles[(token, interval)] = sorted(bars, key=lambda b: b.timestamp)

    def push_tick(self, tick: Tick) -> None:
        self._ltp[tick.token] = tick.last_price
        self._ticks.put_nowait(tick)

    def close_stream(self) -> None:
        """End the current tick_stream() iteration."""
        self._ticks.put_nowait(None)

    def fail_next(self, n: int, error: TradingError | None = None) -> None:
        """Make the next ``n`` placements raise ``error`` (BrokerApiError by default)."""
        self._fail_next = n
        self._fail_error = error

    def fill_for(self, order_id: str) -> PaperFill | None:
        return self._fills.get(order_id)

    def set_vix(self, vix: float) -> None:
        self._vix = vix

    async def latest(self) -> float | None:
        """VixFeed: the last scripted VIX value."""
        return self._vix

    # --- BrokerGateway ---

    async def authenticate(self) -> TokenSet:
        self._authenticated = True
        now = self._clock()
        logger.info("Paper broker session ready")
        return TokenSet(
            access_token=f"paper-{uuid.uuid4().hex}",
            feed_token="paper-feed",
            access_expiry=now + timedelta(hours=24),
            feed_expiry=now + timedelta(hours=24),
        )

    async def place_order(
        self,
        symbol: str,
        token: str,
        side: Side,
        order_type: OrderType,
        quantity: int,
        price: float | None,
    ) -> str:
        self.place_calls += 1
        if self._fail_next > 0:
            self._fail_next -= 1
            raise self._fail_error or BrokerApiError("Simulated broker failure", broker_code="PAPER")

        if order_type is OrderType.MARKET or price is None:
            if token not in self._ltp:
                raise MissingData(f"No paper LTP for {symbol} ({token})")
            price = self._ltp[token]

        slip = self._slippage_bps / 10_000.0
        fill_price = price * (1 + slip) if side is Side.BUY else price * (1 - slip)
        order_id = f"PAPER_{uuid.uuid4()}"
        self._fills[order_id] = PaperFill(
            order_id=order_id,
            symbol=symbol,
            token=token,
            side=side,
            quantity=quantity,
            price=round(fill_price, 2),
            timestamp=self._clock(),
        )
        logger.info(
            "PAPER %s %s %d @ %.2f (limit %.2f)", side.value, symbol, quantity, fill_price, price
        )
        return order_id

    async def historical_candles(
        self,
        token: str,
        interval: str,
        start: datetime,
        end: datetime,
    ) -> list[Bar]:
        return [
            b for b in self._candles.get((token, interval), [])
            if start <= b.timestamp <= end
        ]

    async def ltp(self, token: str) -> float:
        if token not in self._ltp:
            raise MissingData(f"No paper LTP for token {token}")
        return self._ltp[token]

    async def subscribe(self, tokens: list[str], exchange: str) -> None:
        self._subscriptions.update(tokens)
        logger.info("Paper subscription on %s: %d tokens", exchange, len(tokens))

    async def tick_stream(self) -> AsyncIterator[Tick]:
        while True:
            tick = await self._ticks.get()
            if tick is None:
                return
            yield tick
