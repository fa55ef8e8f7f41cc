"""Asyncio pub/sub event bus with idempotency and a durable append log.

publish():
  1. Reject a repeated idempotency key with DuplicateEvent (not delivered, not logged)
  2. Append the event as one JSON line to the log and fsync
  3. Enqueue for the single consumer task

The consumer drains the queue sequentially. A failing handler is logged and the
remaining handlers for the same event still run. Before start() (or after stop())
events are delivered inline, which keeps one-shot tools and unit tests simple.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Coroutine

from fno_engine.core.data_types import Event
from fno_engine.core.errors import DuplicateEvent, TradingError
from fno_engine.core.types import EventKind

logger = logging.getLogger(__name__)

# Type alias for handlers
EventHandler = Callable[[Event], Coroutine[Any, Any, None] | None]


class EventBus:
    """Single-consumer event bus keyed by EventKind."""

    def __init__(
        self,
        log_path: str | Path | None = None,
        max_queue_depth: int = 10_000,
    ) -> None:
        self._subscribers: dict[EventKind, list[EventHandler]] = defaultdict(list)
        self._log_path = Path(log_path) if log_path is not None else None
        self._max_queue_depth = max_queue_depth
        self._queue: asyncio.Queue[Event] | None = None
        self._running = False
        self._dispatch_task: asyncio.Task | None = None
        self._publish_lock = asyncio.Lock()
        self._processed: set[str] = set()

        if self._log_path is not None:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, kind: EventKind, handler: EventHandler) -> None:
        """Register a handler (plain function or coroutine function) for an event kind."""
        self._subscribers[kind].append(handler)

    def unsubscribe(self, kind: EventKind, handler: EventHandler) -> None:
        if handler in self._subscribers.get(kind, []):
            self._subscribers[kind].remove(handler)

    def has_seen(self, idempotency_key: str) -> bool:
        return idempotency_key in self._processed

    def clear_processed(self) -> None:
        """Forget seen idempotency keys (daily reset)."""
        self._processed.clear()

    async def publish(self, event: Event) -> None:
        """Publish an event. Raises DuplicateEvent for a key already published."""
        async with self._publish_lock:
            if event.idempotency_key in self._processed:
                logger.warning(
                    "Duplicate event rejected: %s (%s)",
                    event.kind.value,
                    event.idempotency_key,
                )
                raise DuplicateEvent(event.idempotency_key, kind=event.kind.value)

            if self._log_path is not None:
                await asyncio.to_thread(self._append_log, event)

            self._processed.add(event.idempotency_key)

            if self._running and self._queue is not None:
                if self._queue.qsize() >= self._max_queue_depth:
                    logger.warning(
                        "Event bus backpressure: queue full (%d), waiting to enqueue %s",
                        self._max_queue_depth,
                        event.kind.value,
                    )
                await self._queue.put(event)
                return

        # No dispatch loop running, deliver directly
        await self._deliver(event)

    async def emit(
        self,
        kind: EventKind,
        payload: dict[str, Any] | None = None,
        source: str = "",
        idempotency_key: str | None = None,
        timestamp: datetime | None = None,
    ) -> Event:
        """Build an event with a fresh key and publish it."""
        event = Event.create(
            kind, payload, source=source, idempotency_key=idempotency_key, timestamp=timestamp
        )
        await self.publish(event)
        return event

    async def start(self) -> None:
        """Start the background consumer."""
        if self._running:
            return
        self._queue = asyncio.Queue(maxsize=self._max_queue_depth)
        self._running = True
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Drain queued events, then stop the consumer."""
        if self._queue is not None and self._running:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Event bus stopped with %d undelivered events", self._queue.qsize()
                )
        self._running = False
        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass
            self._dispatch_task = None
        self._queue = None

    def replay(self, from_timestamp: datetime | None = None) -> list[Event]:
        """Return logged events with timestamp >= cutoff, in log order."""
        if self._log_path is None or not self._log_path.exists():
            return []

        events: list[Event] = []
        with open(self._log_path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    event = Event.from_dict(json.loads(line))
                except (ValueError, KeyError):
                    logger.warning("Skipping malformed event log line %d in %s", lineno, self._log_path)
                    continue
                if from_timestamp is None or event.timestamp >= from_timestamp:
                    events.append(event)
        return events

    def _append_log(self, event: Event) -> None:
        line = json.dumps(event.to_dict(), separators=(",", ":"))
        with open(self._log_path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())

    async def _dispatch_loop(self) -> None:
        """Background loop that processes queued events."""
        while self._running:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.1)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: Event) -> None:
        """Invoke every handler for the event's kind."""
        handlers = list(self._subscribers.get(event.kind, []))
        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except TradingError as e:
                logger.error(
                    "[%s] handler %s failed for %s: %s",
                    e.code,
                    getattr(handler, "__qualname__", handler),
                    event.kind.value,
                    e.message,
                )
            except Exception:
                logger.exception("Error in event handler for %s", event.kind.value)
