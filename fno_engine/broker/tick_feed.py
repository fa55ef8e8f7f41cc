"""Tick Feed — market-data stream into TickBuffer and the bar aggregators.

run():
  subscribe → WEBSOCKET_CONNECTED → consume tick_stream()
  on disconnect: WEBSOCKET_DISCONNECTED, wait ws_reconnect_backoff_sec, resubscribe
  more than ws_max_reconnects_per_minute disconnects inside 60 s → WebSocketError
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from fno_engine.config.engine_config import EngineConfig
from fno_engine.core.data_types import Event, Tick, utc_now
from fno_engine.core.errors import WebSocketDisconnected, WebSocketError
from fno_engine.core.types import EventKind
from fno_engine.data.bar_aggregator import MultiBarAggregator
from fno_engine.data.tick_buffer import TickBuffer

logger = logging.getLogger(__name__)


class TickFeed:
    def __init__(
        self,
        config: EngineConfig,
        gateway,
        tick_buffer: TickBuffer,
        aggregators: MultiBarAggregator,
        event_bus=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._buffer = tick_buffer
        self._aggregators = aggregators
        self._event_bus = event_bus
        self._sleep = sleep
        self._clock = clock

        self._connected = False
        self._stopping = False
        self._disconnects: deque[datetime] = deque()
        self._ticks_received = 0

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def ticks_received(self) -> int:
        return self._ticks_received

    def stop(self) -> None:
        self._stopping = True

    async def run(self, tokens: list[str], exchange: str) -> None:
        """Consume ticks until stop(); raise WebSocketError when reconnects run out."""
        while not self._stopping:
            try:
                await self._gateway.subscribe(tokens, exchange)
                self._connected = True
                await self._publish(EventKind.WEBSOCKET_CONNECTED, {
                    "tokens": list(tokens),
                    "exchange": exchange,
                })
                async for tick in self._gateway.tick_stream():
                    await self.handle_tick(tick)
                    if self._stopping:
                        break
                if self._stopping:
                    break
                reason = "stream ended"
            except (WebSocketDisconnected, ConnectionError, OSError) as e:
                reason = str(e)

            self._connected = False
            await self._on_disconnect(reason)
            await self._sleep(self._config.ws_reconnect_backoff_sec)

        self._connected = False
        logger.info("Tick feed stopped after %d ticks", self._ticks_received)

    async def handle_tick(self, tick: Tick) -> None:
        self._buffer.push(tick)
        self._ticks_received += 1
        await self._aggregators.process_tick(tick)

    async def _on_disconnect(self, reason: str) -> None:
        now = self._clock()
        self._disconnects.append(now)
        cutoff = now - timedelta(minutes=1)
        while self._disconnects and self._disconnects[0] < cutoff:
            self._disconnects.popleft()

        logger.warning("WebSocket disconnected: %s (%d in last minute)", reason, len(self._disconnects))
        await self._publish(EventKind.WEBSOCKET_DISCONNECTED, {
            "reason": reason,
            "recent_disconnects": len(self._disconnects),
        })
        if len(self._disconnects) > self._config.ws_max_reconnects_per_minute:
            raise WebSocketError(
                f"{len(self._disconnects)} disconnects within a minute, giving up"
            )

    async def _publish(self, kind: EventKind, payload: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(
                Event.create(kind, payload, source="TickFeed", timestamp=self._clock())
            )
