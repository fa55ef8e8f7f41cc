"""Performance metrics over closed trades.

Drawdown is measured on the cumulative net-PnL curve in trade order.
Sharpe is not computed: per-trade option returns are not a daily return series.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from fno_engine.core.data_types import Trade
from fno_engine.core.types import OptionType


def max_drawdown(net_pnls: Sequence[float]) -> float:
    """Largest peak-to-trough fall of the cumulative PnL curve (>= 0)."""
    if not net_pnls:
        return 0.0
    curve = np.concatenate(([0.0], np.cumsum(np.asarray(net_pnls, dtype=np.float64))))
    peaks = np.maximum.accumulate(curve)
    return float(np.max(peaks - curve))


def _side_breakdown(trades: Sequence[Trade]) -> dict:
    wins = [t for t in trades if t.net_pnl > 0]
    return {
        "trades": len(trades),
        "wins": len(wins),
        "win_rate": len(wins) / len(trades) if trades else 0.0,
        "net_pnl": sum(t.net_pnl for t in trades),
    }


def compute_metrics(trades: Sequence[Trade]) -> dict:
    """Summary statistics for a list of trades."""
    total = len(trades)
    if total == 0:
        return {"total_trades": 0, "sharpe": None}

    wins = [t for t in trades if t.net_pnl > 0]
    losses = [t for t in trades if t.net_pnl <= 0]
    gross_profit = sum(t.net_pnl for t in wins)
    gross_loss = sum(t.net_pnl for t in losses)
    hold = np.asarray([t.duration_sec for t in trades], dtype=np.float64)

    exit_reasons: dict[str, int] = {}
    for t in trades:
        exit_reasons[t.exit_reason] = exit_reasons.get(t.exit_reason, 0) + 1

    return {
        "total_trades": total,
        "wins": len(wins),
        "losses": len(losses),
        "win_rate": len(wins) / total,
        "total_net_pnl": gross_profit + gross_loss,
        "total_brokerage": sum(t.brokerage for t in trades),
        "gross_profit": gross_profit,
        "gross_loss": gross_loss,
        "avg_win": gross_profit / len(wins) if wins else 0.0,
        "avg_loss": gross_loss / len(losses) if losses else 0.0,
        "largest_win": max((t.net_pnl for t in wins), default=0.0),
        "largest_loss": min((t.net_pnl for t in losses), default=0.0),
        "profit_factor": abs(gross_profit / gross_loss) if gross_loss != 0 else None,
        "max_drawdown": max_drawdown([t.net_pnl for t in trades]),
        "avg_hold_sec": float(hold.mean()),
        "max_hold_sec": float(hold.max()),
        "min_hold_sec": float(hold.min()),
        "ce": _side_breakdown([t for t in trades if t.option_type is OptionType.CALL]),
        "pe": _side_breakdown([t for t in trades if t.option_type is OptionType.PUT]),
        "exit_reasons": exit_reasons,
        "sharpe": None,
    }
