"""WebSocket endpoint — periodic engine snapshots plus live trading events.

Clients choose channels with {"type": "subscribe", "channels": [...]}:
  dashboard, positions, risk   snapshot every SNAPSHOT_INTERVAL_SEC
  events                       POSITION_*/exit/VIX/kill-switch events as they are published
New connections get dashboard, positions and events.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from fno_engine.core.data_types import Event
from fno_engine.core.types import EventKind
from fno_engine.server.state import EngineState

logger = logging.getLogger(__name__)

SNAPSHOT_INTERVAL_SEC = 1.0

SNAPSHOT_CHANNELS = ("dashboard", "positions", "risk")
CHANNELS = frozenset(SNAPSHOT_CHANNELS + ("events",))
DEFAULT_CHANNELS = frozenset({"dashboard", "positions", "events"})

STREAMED_KINDS = (
    EventKind.POSITION_OPENED,
    EventKind.POSITION_CLOSED,
    EventKind.EXIT_SIGNAL_GENERATED,
    EventKind.VIX_SPIKE,
    EventKind.VIX_NORMAL_RESUMED,
    EventKind.DAILY_LOSS_LIMIT_BREACHED,
    EventKind.EOD_MANDATORY_EXIT,
    EventKind.KILL_SWITCH_ACTIVATED,
)


class ConnectionManager:
    """Tracks clients and their channels; relays engine events to the `events` channel."""

    def __init__(self) -> None:
        self.channels: dict[WebSocket, set[str]] = {}
        self._bus = None

    @property
    def active(self) -> list[WebSocket]:
        return list(self.channels)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self.channels[ws] = set(DEFAULT_CHANNELS)
        logger.info("WebSocket client connected (%d active)", len(self.channels))

    def disconnect(self, ws: WebSocket) -> None:
        self.channels.pop(ws, None)
        logger.info("WebSocket client disconnected (%d active)", len(self.channels))

    def subscribe(self, ws: WebSocket, channels) -> set[str]:
        """Replace a client's channels; unknown names are dropped."""
        chosen = {c for c in channels if c in CHANNELS}
        self.channels[ws] = chosen
        return chosen

    def attach(self, event_bus) -> None:
        """Relay STREAMED_KINDS from ``event_bus``; re-attaching moves the relay."""
        if event_bus is self._bus:
            return
        self.detach()
        for kind in STREAMED_KINDS:
            event_bus.subscribe(kind, self.on_event)
        self._bus = event_bus

    def detach(self) -> None:
        if self._bus is None:
            return
        for kind in STREAMED_KINDS:
            self._bus.unsubscribe(kind, self.on_event)
        self._bus = None

    async def on_event(self, event: Event) -> None:
        await self.broadcast("events", {
            "type": "event",
            "kind": event.kind.value,
            "timestamp": event.timestamp.isoformat(),
            "data": event.payload,
        })

    async def broadcast(self, channel: str, message: dict[str, Any]) -> None:
        dead = []
        for ws, channels in list(self.channels.items()):
            if channel not in channels:
                continue
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)


manager = ConnectionManager()


def _snapshot(state: EngineState, channel: str):
    if channel == "dashboard":
        return state.snapshot_dashboard()
    if channel == "positions":
        return state.snapshot_positions()
    return state.snapshot_risk()


async def _handle_message(ws: WebSocket, raw: str) -> None:
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON client message")
        return
    kind = msg.get("type") if isinstance(msg, dict) else None
    if kind == "ping":
        await ws.send_json({"type": "pong"})
    elif kind == "subscribe":
        chosen = manager.subscribe(ws, msg.get("channels") or [])
        await ws.send_json({"type": "subscribed", "channels": sorted(chosen)})


async def websocket_endpoint(ws: WebSocket) -> None:
    await manager.connect(ws)
    state = EngineState()
    if state.orchestrator is not None:
        manager.attach(state.orchestrator.event_bus)

    try:
        while True:
            try:
                raw = await asyncio.wait_for(ws.receive_text(), timeout=SNAPSHOT_INTERVAL_SEC)
                await _handle_message(ws, raw)
            except asyncio.TimeoutError:
                pass

            channels = manager.channels.get(ws, set())
            for channel in SNAPSHOT_CHANNELS:
                if channel in channels:
                    await ws.send_json({"type": channel, "data": _snapshot(state, channel)})

    except WebSocketDisconnect:
        manager.disconnect(ws)
    except RuntimeError as e:
        logger.error("WebSocket error: %s", e)
        manager.disconnect(ws)
