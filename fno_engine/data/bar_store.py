"""BarStore — append-only OHLCV series per (symbol, timeframe).

Two tiers:
  - hot: bounded deque of the most recent N bars
  - cold: JSONL append log, one bar per line, fsynced per append

append() writes the disk line first and only then touches memory, so a failed
write leaves the hot tier untouched. Writers are serialized by an asyncio lock;
readers take a snapshot of the deque and never wait.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

from fno_engine.core.data_types import Bar
from fno_engine.core.errors import FileWriteFailed, InvalidBarData
from fno_engine.core.types import Timeframe

logger = logging.getLogger(__name__)


def bar_log_name(symbol: str, timeframe: Timeframe | str) -> str:
    """Stable lowercase file name for a (symbol, timeframe) series."""
    tf = timeframe.value if isinstance(timeframe, Timeframe) else str(timeframe)
    slug = re.sub(r"[^a-z0-9]+", "_", f"{symbol}_{tf}".lower()).strip("_")
    return f"bars_{slug}.jsonl"


class BarStore:
    """Hybrid memory/disk bar store for one (symbol, timeframe)."""

    def __init__(
        self,
        symbol: str,
        timeframe: Timeframe,
        data_dir: str | Path,
        capacity: int = 500,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._symbol = symbol
        self._timeframe = timeframe
        self._capacity = capacity
        self._path = Path(data_dir) / bar_log_name(symbol, timeframe)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._memory: deque[Bar] = deque(maxlen=capacity)
        self._lock = asyncio.Lock()

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def timeframe(self) -> Timeframe:
        return self._timeframe

    @property
    def path(self) -> Path:
        return self._path

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def memory_count(self) -> int:
        return len(self._memory)

    async def append(self, bar: Bar) -> None:
        """Persist then cache one completed bar. Boundaries must strictly increase."""
        if bar.high < bar.low:
            raise InvalidBarData(
                f"{self._symbol} {self._timeframe.value}: high {bar.high} < low {bar.low}"
            )
        async with self._lock:
            last = self.last()
            if last is not None and bar.timestamp <= last.timestamp:
                raise InvalidBarData(
                    f"{self._symbol} {self._timeframe.value}: bar at {bar.timestamp.isoformat()} "
                    f"is not after {last.timestamp.isoformat()}"
                )
            line = json.dumps(bar.to_dict(), separators=(",", ":"))
            try:
                await asyncio.to_thread(self._write_line, line)
            except OSError as e:
                raise FileWriteFailed(f"bar append to {self._path} failed: {e}") from e
            self._memory.append(bar)

    def last(self) -> Bar | None:
        if self._memory:
            return self._memory[-1]
        tail = self._read_tail(1)
        return tail[-1] if tail else None

    def recent(self, k: int) -> list[Bar]:
        """Return the k most recent bars, oldest first."""
        if k <= 0:
            return []
        snapshot = list(self._memory)
        if k <= len(snapshot):
            return snapshot[-k:]

        merged = {b.timestamp: b for b in self._read_tail(k)}
        for bar in snapshot:
            merged[bar.timestamp] = bar
        ordered = [merged[ts] for ts in sorted(merged)]
        return ordered[-k:]

    def all_in_memory(self) -> list[Bar]:
        return list(self._memory)

    def total_count(self) -> int:
        """Number of bars in the on-disk log."""
        if not self._path.exists():
            return 0
        with open(self._path, encoding="utf-8") as f:
            return sum(1 for line in f if line.strip())

    def load(self, k: int | None = None) -> int:
        """Rehydrate the hot tier from the last k logged bars. Returns bars loaded."""
        n = self._capacity if k is None else min(k, self._capacity)
        bars = self._read_tail(n)
        self._memory.clear()
        self._memory.extend(bars)
        logger.info(
            "Loaded %d %s %s bars from %s", len(bars), self._symbol, self._timeframe.value, self._path
        )
        return len(bars)

    async def rotate(self, new_path: str | Path | None = None) -> Path | None:
        """Archive the current log and start a fresh one holding the in-memory tail.

        Returns the archive path, or None when there was no log to archive.
        """
        async with self._lock:
            archive: Path | None = None
            if self._path.exists():
                stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
                archive = self._path.with_name(f"{self._path.name}.{stamp}.archive")
                self._path.rename(archive)
                logger.info("Archived bar log %s → %s", self._path, archive)

            if new_path is not None:
                self._path = Path(new_path)
                self._path.parent.mkdir(parents=True, exist_ok=True)

            lines = [json.dumps(b.to_dict(), separators=(",", ":")) for b in self._memory]
            await asyncio.to_thread(self._rewrite, lines)
            return archive

    def _write_line(self, line: str) -> None:
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())

    def _rewrite(self, lines: list[str]) -> None:
        with open(self._path, "w", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())

    def _read_tail(self, k: int) -> list[Bar]:
        if k <= 0 or not self._path.exists():
            return []
        tail: deque[str] = deque(maxlen=k)
        with open(self._path, encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    tail.append(line)
        bars = []
        for line in tail:
            try:
                bars.append(Bar.from_dict(json.loads(line)))
            except (ValueError, KeyError):
                logger.warning("Skipping malformed bar line in %s", self._path)
        return bars
