"""NumPy pre-allocated circular buffer for market ticks.

push is O(1); reads are O(n) on the requested window, never on capacity.
"""

from __future__ import annotations

import numpy as np

# Structured dtype for one tick; bid/ask are NaN when the feed omits them
TICK_DTYPE = np.dtype([
    ("timestamp_ns", np.int64),
    ("price", np.float64),
    ("bid", np.float64),
    ("ask", np.float64),
    ("volume", np.int64),
])


class RingBuffer:
    """Fixed-capacity circular buffer; the oldest record is overwritten on overflow."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._buffer = np.zeros(capacity, dtype=TICK_DTYPE)
        self._head = 0       # next write position
        self._count = 0      # valid records (capped at capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def count(self) -> int:
        return self._count

    def push(
        self,
        timestamp_ns: int,
        price: float,
        volume: int = 0,
        bid: float = float("nan"),
        ask: float = float("nan"),
    ) -> None:
        idx = self._head
        self._buffer[idx]["timestamp_ns"] = timestamp_ns
        self._buffer[idx]["price"] = price
        self._buffer[idx]["bid"] = bid
        self._buffer[idx]["ask"] = ask
        self._buffer[idx]["volume"] = volume
        self._head = (idx + 1) % self._capacity
        if self._count < self._capacity:
            self._count += 1

    def latest(self) -> np.void | None:
        """Return the most recently pushed record, or None if empty."""
        if self._count == 0:
            return None
        idx = (self._head - 1) % self._capacity
        return self._buffer[idx]

    def last_n(self, n: int) -> np.ndarray:
        """Return up to n most recent records, oldest first (copy)."""
        if n <= 0 or self._count == 0:
            return np.zeros(0, dtype=TICK_DTYPE)
        data = self._get_ordered_data()
        return data[-n:].copy()

    def window_ns(self, nanoseconds: int) -> np.ndarray:
        """Return records within the last N nanoseconds of the newest record."""
        if self._count == 0:
            return np.zeros(0, dtype=TICK_DTYPE)
        data = self._get_ordered_data()
        cutoff = data[-1]["timestamp_ns"] - nanoseconds
        mask = data["timestamp_ns"] >= cutoff
        return data[mask].copy()

    def to_array(self) -> np.ndarray:
        return self._get_ordered_data().copy()

    def clear(self) -> None:
        """Reset buffer without reallocation."""
        self._head = 0
        self._count = 0

    def _get_ordered_data(self) -> np.ndarray:
        """Return all valid records in chronological order."""
        if self._count == 0:
            return np.zeros(0, dtype=TICK_DTYPE)

        if self._count < self._capacity:
            return self._buffer[:self._count]
        # Wrapped: oldest data starts at head
        return np.concatenate([
            self._buffer[self._head:],
            self._buffer[:self._head],
        ])
