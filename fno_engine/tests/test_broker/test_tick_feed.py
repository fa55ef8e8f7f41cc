"""Tests for the market data feed loop."""

import pytest

from fno_engine.broker.tick_feed import TickFeed
from fno_engine.core.errors import WebSocketError
from fno_engine.core.types import EventKind, Timeframe
from fno_engine.data.bar_aggregator import BarAggregator, MultiBarAggregator
from fno_engine.data.bar_store import BarStore
from fno_engine.data.tick_buffer import TickBuffer

from conftest import EventRecorder, ist, make_config, make_tick, no_sleep


class DroppingGateway:
    """Every subscribe fails as if the socket dropped."""

    def __init__(self):
        self.subscribes = 0

    async def subscribe(self, tokens, exchange):
        self.subscribes += 1
        raise ConnectionError("socket closed")

    def tick_stream(self):
        raise AssertionError("not reached")


class TestTickFeed:
    @pytest.mark.asyncio
    async def test_ticks_reach_buffer_and_bars(self, paper, bus, clock, tmp_path):
        recorder = EventRecorder(bus, [
            EventKind.WEBSOCKET_CONNECTED, EventKind.WEBSOCKET_DISCONNECTED, EventKind.BAR_READY,
        ])
        store = BarStore("NIFTY", Timeframe.H1, tmp_path)
        aggregators = MultiBarAggregator()
        aggregators.add(BarAggregator("NIFTY", Timeframe.H1, store, event_bus=bus, token="26000", clock=clock))
        buffer = TickBuffer(capacity=10)

        async def stop_on_backoff(seconds):
            feed.stop()

        feed = TickFeed(make_config(), paper, buffer, aggregators, event_bus=bus,
                        sleep=stop_on_backoff, clock=clock)
        paper.push_tick(make_tick(ist(2025, 1, 6, 10, 59, 58), 20000.0))
        paper.push_tick(make_tick(ist(2025, 1, 6, 11, 0, 2), 20010.0))
        paper.close_stream()

        await feed.run(["26000"], "NSE")

        assert feed.ticks_received == 2
        assert buffer.last("NIFTY").last_price == 20010.0
        assert store.last().timestamp == ist(2025, 1, 6, 10)
        assert recorder.kinds() == [
            EventKind.WEBSOCKET_CONNECTED, EventKind.BAR_READY, EventKind.WEBSOCKET_DISCONNECTED,
        ]
        assert not feed.connected

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_disconnects(self, bus, clock):
        gateway = DroppingGateway()
        feed = TickFeed(make_config(ws_max_reconnects_per_minute=3), gateway, TickBuffer(),
                        MultiBarAggregator(), event_bus=bus, sleep=no_sleep, clock=clock)
        with pytest.raises(WebSocketError):
            await feed.run(["26000"], "NSE")
        assert gateway.subscribes == 4

    @pytest.mark.asyncio
    async def test_disconnects_outside_window_forgotten(self, bus, clock):
        gateway = DroppingGateway()

        async def slow_backoff(seconds):
            clock.advance(seconds=45)
            if gateway.subscribes >= 6:
                feed.stop()

        feed = TickFeed(make_config(ws_max_reconnects_per_minute=2), gateway, TickBuffer(),
                        MultiBarAggregator(), event_bus=bus, sleep=slow_backoff, clock=clock)
        await feed.run(["26000"], "NSE")
        assert gateway.subscribes == 6
