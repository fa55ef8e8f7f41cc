"""Trade Journal — daily trade and position artifacts.

Trades are collected in memory as they close and written as one JSON list to
``trades_YYYYMMDD.json``; open positions can be snapshotted to
``positions_YYYYMMDD.json``. Both files are rewritten atomically.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import date
from pathlib import Path

from fno_engine.core.data_types import Position, Trade
from fno_engine.core.errors import DataFileNotFound, DeserializationError
from fno_engine.reporting.performance import compute_metrics
from fno_engine.utils.files import atomic_write_json, dated_name

logger = logging.getLogger(__name__)


class TradeJournal:
    def __init__(self, data_dir: str | Path) -> None:
        self._data_dir = Path(data_dir)
        self._trades: list[Trade] = []

    @property
    def trades(self) -> list[Trade]:
        return list(self._trades)

    def trades_path(self, day: date) -> Path:
        return self._data_dir / dated_name("trades", day)

    def positions_path(self, day: date) -> Path:
        return self._data_dir / dated_name("positions", day)

    def log_trade(self, trade: Trade) -> None:
        if any(t.trade_id == trade.trade_id for t in self._trades):
            return
        self._trades.append(trade)

    def write_trades(self, day: date, trades: Iterable[Trade] | None = None) -> Path:
        records = [t.to_dict() for t in (self._trades if trades is None else trades)]
        path = atomic_write_json(self.trades_path(day), records)
        logger.info("Wrote %d trades to %s", len(records), path)
        return path

    def write_positions(self, day: date, positions: Iterable[Position]) -> Path:
        records = [p.to_dict() for p in positions]
        path = atomic_write_json(self.positions_path(day), records)
        logger.debug("Position snapshot: %d open → %s", len(records), path)
        return path

    def load_trades(self, day: date) -> list[Trade]:
        return self.read_trades_file(self.trades_path(day))

    @staticmethod
    def read_trades_file(path: str | Path) -> list[Trade]:
        path = Path(path)
        if not path.exists():
            raise DataFileNotFound(f"Trades file not found: {path}", path=str(path))
        try:
            with open(path, encoding="utf-8") as f:
                return [Trade.from_dict(d) for d in json.load(f)]
        except (ValueError, KeyError, TypeError) as e:
            raise DeserializationError(f"Invalid trades file {path}: {e}") from e

    def get_trade_summary(self) -> dict:
        return compute_metrics(self._trades)

    def reset(self) -> None:
        self._trades.clear()
