#!/usr/bin/env python3
"""Summarize a daily trades file.

Usage:
    python scripts/trade_report.py data/trades_20250106.json
    python scripts/trade_report.py data/trades_20250106.json --json
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fno_engine.core.errors import TradingError
from fno_engine.reporting.performance import compute_metrics
from fno_engine.reporting.trade_journal import TradeJournal


def parse_args():
    parser = argparse.ArgumentParser(description="Daily trade report")
    parser.add_argument("trades_file", type=str, help="Path to trades_YYYYMMDD.json")
    parser.add_argument("--json", action="store_true", help="Print metrics as JSON")
    return parser.parse_args()


def print_report(trades, metrics: dict) -> None:
    print(f"\n{'=' * 60}")
    print("  TRADE REPORT")
    print(f"{'=' * 60}")
    print(f"  Trades:          {metrics['total_trades']}")
    if not trades:
        print(f"{'=' * 60}\n")
        return
    pf = metrics["profit_factor"]
    print(f"  Win rate:        {metrics['win_rate'] * 100:.1f}% "
          f"({metrics['wins']}W / {metrics['losses']}L)")
    print(f"  Net PnL:         {metrics['total_net_pnl']:,.2f}")
    print(f"  Brokerage:       {metrics['total_brokerage']:,.2f}")
    print(f"  Profit factor:   {pf:.2f}" if pf is not None else "  Profit factor:   n/a")
    print(f"  Max drawdown:    {metrics['max_drawdown']:,.2f}")
    print(f"  Avg hold:        {metrics['avg_hold_sec'] / 60:.1f} min")
    for side in ("ce", "pe"):
        s = metrics[side]
        print(f"  {side.upper()}:              {s['trades']} trades, "
              f"{s['win_rate'] * 100:.1f}% win, net {s['net_pnl']:,.2f}")
    print("  Exit reasons:")
    for reason, count in sorted(metrics["exit_reasons"].items(), key=lambda kv: -kv[1]):
        print(f"    {reason:<22} {count}")
    print(f"{'-' * 60}")
    for t in trades:
        print(f"  {t.entry_time:%H:%M} → {t.exit_time:%H:%M}  {t.symbol:<24} "
              f"{t.exit_reason:<20} {t.net_pnl:>12,.2f}")
    print(f"{'=' * 60}\n")


def main() -> int:
    args = parse_args()
    try:
        trades = TradeJournal.read_trades_file(args.trades_file)
    except TradingError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    metrics = compute_metrics(trades)
    if args.json:
        print(json.dumps(metrics, indent=2))
    else:
        print_report(trades, metrics)
    return 0


if __name__ == "__main__":
    sys.exit(main())
