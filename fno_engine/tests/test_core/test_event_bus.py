"""Tests for EventBus — pub/sub, idempotency, durable log and replay."""

import asyncio
import json
from datetime import timedelta

import pytest

from fno_engine.core.data_types import Event, utc_now
from fno_engine.core.errors import DuplicateEvent, PositionNotFound
from fno_engine.core.event_bus import EventBus
from fno_engine.core.types import EventKind


class TestEventBus:
    @pytest.mark.asyncio
    async def test_basic_pub_sub(self):
        bus = EventBus()
        received = []

        async def handler(event):
            received.append(event)

        bus.subscribe(EventKind.ORDER_PLACED, handler)
        await bus.publish(Event.create(EventKind.ORDER_PLACED, {"order_id": "o1"}))
        assert len(received) == 1
        assert received[0].payload["order_id"] == "o1"

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        bus = EventBus()
        counts = [0, 0]

        def sync_handler(event):
            counts[0] += 1

        async def async_handler(event):
            counts[1] += 1

        bus.subscribe(EventKind.BAR_READY, sync_handler)
        bus.subscribe(EventKind.BAR_READY, async_handler)
        await bus.emit(EventKind.BAR_READY, {"symbol": "NIFTY"})
        assert counts == [1, 1]

    @pytest.mark.asyncio
    async def test_event_kind_isolation(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventKind.ORDER_PLACED, received.append)
        await bus.emit(EventKind.POSITION_CLOSED, {})
        assert received == []

    @pytest.mark.asyncio
    async def test_duplicate_key_rejected(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventKind.ORDER_PLACED, received.append)

        await bus.publish(Event.create(EventKind.ORDER_PLACED, idempotency_key="k1"))
        with pytest.raises(DuplicateEvent):
            await bus.publish(Event.create(EventKind.ORDER_PLACED, idempotency_key="k1"))
        assert len(received) == 1
        assert bus.has_seen("k1")

    @pytest.mark.asyncio
    async def test_clear_processed_allows_key_again(self):
        bus = EventBus()
        await bus.publish(Event.create(EventKind.ORDER_PLACED, idempotency_key="k1"))
        bus.clear_processed()
        await bus.publish(Event.create(EventKind.ORDER_PLACED, idempotency_key="k1"))
        assert bus.processed_count == 1

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        received = []

        def bad(event):
            raise PositionNotFound("gone")

        def worse(event):
            raise RuntimeError("boom")

        bus.subscribe(EventKind.POSITION_UPDATED, bad)
        bus.subscribe(EventKind.POSITION_UPDATED, worse)
        bus.subscribe(EventKind.POSITION_UPDATED, received.append)
        await bus.emit(EventKind.POSITION_UPDATED, {})
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_nested_publish_from_handler(self):
        """A handler may publish while the outer publish is still in flight."""
        bus = EventBus()
        seen = []

        async def on_vix(event):
            await bus.emit(EventKind.EXIT_SIGNAL_GENERATED, {"position_id": "p1"})

        bus.subscribe(EventKind.VIX_SPIKE, on_vix)
        bus.subscribe(EventKind.EXIT_SIGNAL_GENERATED, seen.append)
        await asyncio.wait_for(bus.emit(EventKind.VIX_SPIKE, {"vix": 30}), timeout=1.0)
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_background_dispatch_preserves_order(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventKind.TICK_RECEIVED, lambda e: received.append(e.payload["i"]))

        await bus.start()
        for i in range(20):
            await bus.emit(EventKind.TICK_RECEIVED, {"i": i})
        await bus.stop()

        assert received == list(range(20))
        assert not bus.is_running

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventKind.ORDER_PLACED, received.append)
        bus.unsubscribe(EventKind.ORDER_PLACED, received.append)
        await bus.emit(EventKind.ORDER_PLACED, {})
        assert received == []


class TestEventLog:
    @pytest.mark.asyncio
    async def test_events_logged_as_json_lines(self, tmp_path):
        log = tmp_path / "events" / "events.jsonl"
        bus = EventBus(log)
        await bus.emit(EventKind.ORDER_PLACED, {"order_id": "o1"}, source="test")
        await bus.emit(EventKind.ORDER_EXECUTED, {"order_id": "o1"}, source="test")

        lines = log.read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["kind"] == "ORDER_PLACED"
        assert first["payload"] == {"order_id": "o1"}
        assert "timestamp_ms" in first

    @pytest.mark.asyncio
    async def test_duplicate_not_logged(self, tmp_path):
        log = tmp_path / "events.jsonl"
        bus = EventBus(log)
        await bus.publish(Event.create(EventKind.ORDER_PLACED, idempotency_key="same"))
        with pytest.raises(DuplicateEvent):
            await bus.publish(Event.create(EventKind.ORDER_PLACED, idempotency_key="same"))
        assert len(log.read_text().splitlines()) == 1

    @pytest.mark.asyncio
    async def test_replay_from_timestamp(self, tmp_path):
        log = tmp_path / "events.jsonl"
        bus = EventBus(log)
        now = utc_now()
        await bus.publish(Event.create(EventKind.CONFIG_LOADED, timestamp=now - timedelta(hours=2)))
        await bus.publish(Event.create(EventKind.DATA_READY, timestamp=now - timedelta(minutes=5)))
        await bus.publish(Event.create(EventKind.BAR_READY, timestamp=now))

        replayed = EventBus(log).replay(now - timedelta(hours=1))
        assert [e.kind for e in replayed] == [EventKind.DATA_READY, EventKind.BAR_READY]
        assert len(bus.replay()) == 3

    def test_replay_skips_malformed_lines(self, tmp_path):
        log = tmp_path / "events.jsonl"
        good = Event.create(EventKind.DATA_READY, {"x": 1})
        log.write_text("not json\n" + json.dumps(good.to_dict()) + "\n\n")
        events = EventBus(log).replay()
        assert len(events) == 1
        assert events[0].idempotency_key == good.idempotency_key

    def test_replay_without_log(self):
        assert EventBus().replay() == []
