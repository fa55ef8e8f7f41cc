"""Position Manager — open, mark-to-market, stop/trail/target checks, close.

update() order of operations:
  1. Recompute pnl and pnl_pct from the new price
  2. Activate the trailing stop once pnl_pct >= trail_activate_pnl_pct
  3. Ratchet the trailing stop up (never down)
  4. Exit checks, first match wins: stop-loss → trailing stop → target

Competing exit reasons for one position are queued with submit_exit() and
resolved by process_exits(), which applies the highest-priority reason and
records the others as secondary reasons on the Trade.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from datetime import datetime
from typing import Callable, Iterable

from fno_engine.config.engine_config import EngineConfig
from fno_engine.core.data_types import Event, Position, Trade, utc_now
from fno_engine.core.errors import DuplicatePosition, PositionLimitExceeded, PositionNotFound
from fno_engine.core.types import (
    EventKind,
    ExitPriority,
    ExitReason,
    OptionType,
    PositionStatus,
    Side,
)

logger = logging.getLogger(__name__)


class PositionManager:
    def __init__(
        self,
        config: EngineConfig,
        event_bus=None,
        clock: Callable[[], datetime] = utc_now,
        vix_provider: Callable[[], float | None] | None = None,
    ) -> None:
        self._config = config
        self._event_bus = event_bus
        self._clock = clock
        self._vix_provider = vix_provider

        self._positions: dict[str, Position] = {}
        self._closed: dict[str, Trade] = {}
        self._trades: list[Trade] = []
        self._daily_pnl: float = 0.0
        self._pending_exits: dict[str, list[ExitReason]] = {}
        self._lock = asyncio.Lock()

    @property
    def daily_pnl(self) -> float:
        return self._daily_pnl

    @property
    def open_count(self) -> int:
        return len(self._positions)

    def set_vix_provider(self, provider: Callable[[], float | None]) -> None:
        self._vix_provider = provider

    def create_position(
        self,
        symbol: str,
        underlying: str,
        strike: float,
        option_type: OptionType,
        quantity: int,
        entry_price: float,
        token: str = "",
        underlying_entry: float = 0.0,
        entry_reason: str = "",
        idempotency_key: str = "",
        order_id: str | None = None,
        entry_time: datetime | None = None,
    ) -> Position:
        """Build a Position with stop and target derived from the configured exit levels."""
        cfg = self._config
        target = None
        if cfg.option_target_pct > 0:
            target = round(entry_price * (1 + cfg.option_target_pct), 2)
        return Position(
            position_id=str(uuid.uuid4()),
            symbol=symbol,
            underlying=underlying,
            strike=strike,
            option_type=option_type,
            quantity=quantity,
            entry_price=entry_price,
            entry_time=entry_time or self._clock(),
            stop_loss=round(entry_price * (1 - cfg.option_stop_loss_pct), 2),
            side=Side.BUY,
            token=token,
            underlying_entry=underlying_entry,
            target=target,
            entry_reason=entry_reason,
            idempotency_key=idempotency_key,
            order_id=order_id,
            vix_at_entry=self._current_vix(),
        )

    async def open(self, position: Position) -> Position:
        async with self._lock:
            if position.position_id in self._positions or position.position_id in self._closed:
                raise DuplicatePosition(
                    f"Position {position.position_id} already exists",
                    position_id=position.position_id,
                )
            if len(self._positions) >= self._config.max_positions:
                raise PositionLimitExceeded(
                    f"Open positions {len(self._positions)} at limit {self._config.max_positions}",
                )
            position.status = PositionStatus.OPEN
            self._positions[position.position_id] = position

        logger.info(
            "Position opened: %s %d @ %.2f (SL %.2f)",
            position.symbol, position.quantity, position.entry_price, position.stop_loss,
        )
        await self._publish(EventKind.POSITION_OPENED, position.to_dict())
        return position

    async def update(self, position_id: str, current_price: float) -> ExitReason | None:
        """Mark to market; return the exit reason if an exit level was hit."""
        position = self._positions.get(position_id)
        if position is None:
            raise PositionNotFound(f"Unknown position {position_id}", position_id=position_id)
        if position.status is not PositionStatus.OPEN:
            return None

        cfg = self._config
        position.current_price = current_price
        position.pnl = (current_price - position.entry_price) * position.quantity
        position.pnl_pct = (current_price - position.entry_price) / position.entry_price * 100.0
        position.high_price = max(position.high_price, current_price)
        position.low_price = min(position.low_price, current_price)

        if cfg.use_trailing_stop and not position.trail_active:
            if position.pnl_pct >= cfg.trail_activate_pnl_pct:
                position.trail_active = True
                position.trail_stop = current_price * (1 - cfg.trail_gap_pct)
                logger.info(
                    "Trailing stop activated for %s at %.2f (PnL %.2f%%)",
                    position.symbol, position.trail_stop, position.pnl_pct,
                )
                await self._publish(EventKind.TRAILING_STOP_ACTIVATED, {
                    "position_id": position_id,
                    "trail_stop": position.trail_stop,
                    "pnl_pct": position.pnl_pct,
                })
        elif position.trail_active:
            candidate = current_price * (1 - cfg.trail_gap_pct)
            if candidate > position.trail_stop:
                old = position.trail_stop
                position.trail_stop = candidate
                logger.debug("Trailing stop %s: %.2f → %.2f", position.symbol, old, candidate)
                await self._publish(EventKind.TRAILING_STOP_UPDATED, {
                    "position_id": position_id,
                    "old_trail_stop": old,
                    "trail_stop": candidate,
                })

        if current_price <= position.stop_loss:
            logger.warning(
                "Stop-loss hit for %s: %.2f <= %.2f", position.symbol, current_price, position.stop_loss
            )
            await self._publish(EventKind.STOP_LOSS_TRIGGERED, {
                "position_id": position_id,
                "current_price": current_price,
                "stop_loss": position.stop_loss,
            })
            return ExitReason.STOP_LOSS

        if position.trail_active and current_price <= position.trail_stop:
            logger.info(
                "Trailing stop hit for %s: %.2f <= %.2f",
                position.symbol, current_price, position.trail_stop,
            )
            return ExitReason.TRAILING_STOP

        if position.target is not None and current_price >= position.target:
            logger.info("Target reached for %s: %.2f", position.symbol, current_price)
            await self._publish(EventKind.TARGET_REACHED, {
                "position_id": position_id,
                "current_price": current_price,
                "target": position.target,
            })
            return ExitReason.TARGET

        await self._publish(EventKind.POSITION_UPDATED, {
            "position_id": position_id,
            "current_price": current_price,
            "pnl": position.pnl,
            "pnl_pct": position.pnl_pct,
            "trail_active": position.trail_active,
            "trail_stop": position.trail_stop,
            "high_price": position.high_price,
            "low_price": position.low_price,
        })
        return None

    async def close(
        self,
        position_id: str,
        exit_price: float,
        reason: ExitReason | str,
        secondary_reasons: Iterable[ExitReason | str] = (),
        exit_time: datetime | None = None,
    ) -> Trade:
        """Close a position exactly once; a repeated close returns the recorded Trade."""
        async with self._lock:
            existing = self._closed.get(position_id)
            if existing is not None:
                return existing
            position = self._positions.pop(position_id, None)
            if position is None:
                raise PositionNotFound(f"Unknown position {position_id}", position_id=position_id)
            self._pending_exits.pop(position_id, None)

            exit_time = exit_time or self._clock()
            trade = self._build_trade(position, exit_price, reason, secondary_reasons, exit_time)
            position.status = PositionStatus.CLOSED
            position.current_price = exit_price
            self._closed[position_id] = trade
            self._trades.append(trade)
            self._daily_pnl += trade.net_pnl

        logger.info(
            "Position closed: %s @ %.2f reason=%s net=%.2f (daily %.2f)",
            trade.symbol, exit_price, trade.exit_reason, trade.net_pnl, self._daily_pnl,
        )
        await self._publish(EventKind.POSITION_CLOSED, trade.to_dict())
        return trade

    async def close_all(self, reason: ExitReason | str) -> list[Trade]:
        """Close every open position at its last marked price."""
        snapshot = list(self._positions.values())
        trades = []
        for position in snapshot:
            trades.append(await self.close(position.position_id, position.current_price, reason))
        if trades:
            reason_str = reason.value if isinstance(reason, ExitReason) else reason
            await self._publish(EventKind.POSITIONS_CLOSED, {
                "count": len(trades),
                "reason": reason_str,
                "net_pnl": sum(t.net_pnl for t in trades),
            })
        return trades

    def submit_exit(self, position_id: str, reason: ExitReason) -> bool:
        """Queue an exit reason. Returns False when the position is not open."""
        if position_id not in self._positions:
            logger.debug("Exit %s for unknown/closed position %s ignored", reason.value, position_id)
            return False
        reasons = self._pending_exits.setdefault(position_id, [])
        if reason not in reasons:
            reasons.append(reason)
        return True

    def pending_exits(self, position_id: str) -> list[ExitReason]:
        return list(self._pending_exits.get(position_id, ()))

    def pending_exit_ids(self) -> list[str]:
        return [pid for pid, reasons in self._pending_exits.items() if reasons]

    async def process_exits(self, exit_prices: dict[str, float] | None = None) -> list[Trade]:
        """Close each position with pending exits using its highest-priority reason.

        With ``exit_prices`` only the listed positions close, at the given prices;
        otherwise every pending position closes at its last marked price.
        """
        trades = []
        for position_id, reasons in list(self._pending_exits.items()):
            position = self._positions.get(position_id)
            if position is None or not reasons:
                self._pending_exits.pop(position_id, None)
                continue
            if exit_prices is not None and position_id not in exit_prices:
                continue
            price = position.current_price if exit_prices is None else exit_prices[position_id]
            ordered = sorted(reasons, key=lambda r: (r.priority, reasons.index(r)))
            primary, secondary = ordered[0], ordered[1:]
            if primary.priority is ExitPriority.MANDATORY:
                logger.critical("Mandatory exit %s for %s", primary.value, position.symbol)
            trades.append(
                await self.close(position_id, price, primary, secondary)
            )
        return trades

    def get(self, position_id: str) -> Position | None:
        position = self._positions.get(position_id)
        return copy.copy(position) if position is not None else None

    def open_positions(self) -> list[Position]:
        return [copy.copy(p) for p in self._positions.values()]

    def daily_trades(self) -> list[Trade]:
        return list(self._trades)

    def reset_daily(self) -> None:
        self._trades.clear()
        self._closed.clear()
        self._daily_pnl = 0.0
        self._pending_exits.clear()
        logger.info("Position manager daily state reset")

    def restore(self, positions: Iterable[Position]) -> int:
        """Load open positions rebuilt from the event log."""
        count = 0
        for p in positions:
            if p.position_id not in self._positions:
                self._positions[p.position_id] = p
                count += 1
        if count:
            logger.warning("Restored %d open positions from event log", count)
        return count

    def restore_trades(self, trades: Iterable[Trade]) -> list[Trade]:
        """Fold closed trades from the event log into the day's trades and PnL.

        Trades whose position is already recorded as closed are skipped; returns
        the trades actually added.
        """
        added = []
        for trade in trades:
            if trade.position_id in self._closed:
                continue
            self._positions.pop(trade.position_id, None)
            self._closed[trade.position_id] = trade
            self._trades.append(trade)
            self._daily_pnl += trade.net_pnl
            added.append(trade)
        if added:
            logger.warning("Restored %d closed trades from event log (daily PnL %.2f)",
                           len(added), self._daily_pnl)
        return added

    @staticmethod
    def trades_from_events(events: Iterable[Event]) -> list[Trade]:
        """Closed trades recorded in the event log, in log order."""
        return [Trade.from_dict(e.payload) for e in events if e.kind is EventKind.POSITION_CLOSED]

    @staticmethod
    def rebuild_from_events(events: Iterable[Event]) -> list[Position]:
        """Fold logged position events into the set of positions still open."""
        live: dict[str, Position] = {}
        for event in events:
            p = event.payload
            pid = p.get("position_id")
            if event.kind is EventKind.POSITION_OPENED:
                live[pid] = Position.from_dict(p)
            elif pid not in live:
                continue
            elif event.kind is EventKind.POSITION_UPDATED:
                pos = live[pid]
                pos.current_price = p["current_price"]
                pos.pnl = p["pnl"]
                pos.pnl_pct = p["pnl_pct"]
                pos.trail_active = p["trail_active"]
                pos.trail_stop = p["trail_stop"]
                pos.high_price = p.get("high_price", pos.high_price)
                pos.low_price = p.get("low_price", pos.low_price)
            elif event.kind in (EventKind.TRAILING_STOP_ACTIVATED, EventKind.TRAILING_STOP_UPDATED):
                live[pid].trail_active = True
                live[pid].trail_stop = p["trail_stop"]
            elif event.kind is EventKind.POSITION_CLOSED:
                del live[pid]
        return list(live.values())

    def _build_trade(
        self,
        position: Position,
        exit_price: float,
        reason: ExitReason | str,
        secondary_reasons: Iterable[ExitReason | str],
        exit_time: datetime,
    ) -> Trade:
        cfg = self._config
        price_diff = exit_price - position.entry_price
        gross = price_diff * position.quantity
        gross_pct = price_diff / position.entry_price * 100.0
        brokerage = max(exit_price * position.quantity * cfg.brokerage_pct, cfg.brokerage_floor)
        return Trade(
            trade_id=str(uuid.uuid4()),
            position_id=position.position_id,
            symbol=position.symbol,
            underlying=position.underlying,
            strike=position.strike,
            option_type=position.option_type,
            side=position.side,
            quantity=position.quantity,
            entry_price=position.entry_price,
            entry_time=position.entry_time,
            entry_reason=position.entry_reason,
            exit_price=exit_price,
            exit_time=exit_time,
            exit_reason=_reason_str(reason),
            gross_pnl=gross,
            gross_pnl_pct=gross_pct,
            brokerage=brokerage,
            net_pnl=gross - brokerage,
            duration_sec=(exit_time - position.entry_time).total_seconds(),
            high_water=max(position.high_price, exit_price),
            low_water=min(position.low_price, exit_price),
            secondary_reasons=tuple(_reason_str(r) for r in secondary_reasons),
            vix_entry=position.vix_at_entry,
            vix_exit=self._current_vix(),
        )

    def _current_vix(self) -> float | None:
        return self._vix_provider() if self._vix_provider is not None else None

    async def _publish(self, kind: EventKind, payload: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(
                Event.create(kind, payload, source="PositionManager", timestamp=self._clock())
            )


def _reason_str(reason: ExitReason | str) -> str:
    return reason.value if isinstance(reason, ExitReason) else str(reason)
