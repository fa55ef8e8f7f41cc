"""EngineState — Singleton that holds the live Orchestrator and provides API snapshots."""

from __future__ import annotations

import threading
from typing import Any

from fno_engine.reporting.performance import compute_metrics


class EngineState:
    """Singleton holding the running engine for the API layer."""

    _instance: EngineState | None = None
    _lock = threading.Lock()

    def __new__(cls) -> EngineState:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self.orchestrator = None  # Orchestrator | None
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def snapshot_dashboard(self) -> dict[str, Any]:
        o = self.orchestrator
        if o is None:
            return {
                "state": "idle",
                "mode": None,
                "open_positions": 0,
                "daily_pnl": 0,
                "trade_count": 0,
                "current_vix": None,
                "circuit_breaker_active": False,
            }
        status = o.status()
        status["state"] = "running" if o.is_initialized and not o.shutdown_requested else "stopped"
        return status

    def snapshot_positions(self) -> list[dict[str, Any]]:
        o = self.orchestrator
        if o is None:
            return []
        return [p.to_dict() for p in o.positions.open_positions()]

    def snapshot_trades(self) -> dict[str, Any]:
        o = self.orchestrator
        if o is None:
            return {"trades": [], "summary": compute_metrics([])}
        trades = o.positions.daily_trades()
        return {
            "trades": [t.to_dict() for t in trades],
            "summary": compute_metrics(trades),
        }

    def snapshot_risk(self) -> dict[str, Any]:
        o = self.orchestrator
        if o is None:
            return {}
        return o.risk.status()

    def snapshot_orders(self) -> list[dict[str, Any]]:
        o = self.orchestrator
        if o is None:
            return []
        return [order.to_dict() for order in o.orders.all_orders()]

    def snapshot_config(self) -> dict[str, Any]:
        o = self.orchestrator
        if o is None:
            return {}
        return o.config.to_dict()
