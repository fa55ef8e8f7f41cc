"""Risk Manager — VIX circuit breaker, daily-loss limit, consecutive losses, sizing.

Guards:
  VIX breaker:  on at VIX >= spike, off only once VIX < resume (hysteresis);
                activation requests a mandatory exit for every open position
  Daily loss:   daily_pnl / start_capital × 100 <= −limit → mandatory exits, latched for the day
  Loss streak:  consecutive losing trades >= limit blocks new entries for the day
  Pre-entry:    breaker off, loss limit intact, open positions < max, streak below limit
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fno_engine.config.engine_config import EngineConfig
from fno_engine.core.data_types import Event, utc_now
from fno_engine.core.errors import RiskCheckFailed
from fno_engine.core.types import EventKind, ExitPriority, ExitReason
from fno_engine.risk.position_sizer import PositionSizer

logger = logging.getLogger(__name__)


class RiskManager:
    def __init__(
        self,
        config: EngineConfig,
        position_manager,
        event_bus=None,
        sizer: PositionSizer | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._clock = clock
        self._positions = position_manager
        self._event_bus = event_bus
        self._sizer = sizer or PositionSizer(config)

        self._current_vix: float | None = None
        self._breaker_active = False
        self._start_capital = config.start_capital
        self._daily_loss_breached = False
        self._consecutive_losses = 0

    @property
    def current_vix(self) -> float | None:
        return self._current_vix

    @property
    def circuit_breaker_active(self) -> bool:
        return self._breaker_active

    @property
    def daily_loss_breached(self) -> bool:
        return self._daily_loss_breached

    @property
    def consecutive_losses(self) -> int:
        return self._consecutive_losses

    @property
    def start_capital(self) -> float:
        return self._start_capital

    @property
    def sizer(self) -> PositionSizer:
        return self._sizer

    def set_start_capital(self, capital: float) -> None:
        if capital <= 0:
            raise ValueError("start capital must be positive")
        self._start_capital = capital
        logger.info("Start capital set to %.2f", capital)

    async def update_vix(self, vix: float) -> bool:
        """Record a VIX print. Returns True when this print activated the breaker."""
        self._current_vix = vix
        await self._publish(EventKind.VIX_DATA_RECEIVED, {"vix": vix})

        cfg = self._config
        if vix >= cfg.vix_spike_threshold:
            if self._breaker_active:
                return False
            self._breaker_active = True
            position_ids = [p.position_id for p in self._positions.open_positions()]
            logger.critical(
                "VIX SPIKE: %.2f >= %.2f - circuit breaker ACTIVE - %d positions to exit",
                vix, cfg.vix_spike_threshold, len(position_ids),
            )
            await self._publish(EventKind.VIX_SPIKE, {
                "vix": vix,
                "threshold": cfg.vix_spike_threshold,
                "positions_to_exit": position_ids,
            })
            for position_id in position_ids:
                await self._request_exit(position_id, ExitReason.VIX_SPIKE, f"VIX: {vix:.2f}")
            return True

        if vix < cfg.vix_resume_threshold and self._breaker_active:
            self._breaker_active = False
            logger.info(
                "VIX normalized: %.2f < %.2f - circuit breaker DEACTIVATED",
                vix, cfg.vix_resume_threshold,
            )
            await self._publish(EventKind.VIX_NORMAL_RESUMED, {
                "vix": vix,
                "threshold": cfg.vix_resume_threshold,
            })
        return False

    def daily_loss_pct(self) -> float:
        return self._positions.daily_pnl / self._start_capital * 100.0

    async def check_daily_loss(self) -> bool:
        """True when the daily loss limit is breached; open positions get mandatory exits."""
        loss_pct = self.daily_loss_pct()
        if loss_pct > -self._config.daily_loss_limit_pct and not self._daily_loss_breached:
            return False

        position_ids = [p.position_id for p in self._positions.open_positions()]
        if not self._daily_loss_breached:
            self._daily_loss_breached = True
            logger.critical(
                "DAILY LOSS LIMIT BREACHED: %.2f%% (limit -%.2f%%) - closing %d positions",
                loss_pct, self._config.daily_loss_limit_pct, len(position_ids),
            )
            await self._publish(EventKind.DAILY_LOSS_LIMIT_BREACHED, {
                "daily_pnl": self._positions.daily_pnl,
                "loss_pct": loss_pct,
                "limit": -self._start_capital * self._config.daily_loss_limit_pct / 100.0,
                "positions_to_close": position_ids,
            })
        for position_id in position_ids:
            await self._request_exit(
                position_id, ExitReason.DAILY_LOSS_LIMIT, f"Loss: {loss_pct:.2f}%"
            )
        return True

    def record_trade_result(self, net_pnl: float) -> bool:
        """Update the loss streak. Returns True once the streak limit is reached."""
        if net_pnl > 0:
            self._consecutive_losses = 0
            return False
        self._consecutive_losses += 1
        if self._consecutive_losses >= self._config.consecutive_loss_limit:
            logger.warning(
                "CONSECUTIVE LOSS LIMIT reached: %d losses - no more entries today",
                self._consecutive_losses,
            )
            return True
        return False

    async def pre_entry_check(self) -> None:
        """Raise RiskCheckFailed (``check`` names the gate) if a new entry is not allowed."""
        cfg = self._config
        failure: tuple[str, str] | None = None
        if self._breaker_active:
            failure = ("vix_circuit_breaker", f"VIX circuit breaker active (VIX {self._current_vix})")
        elif self._daily_loss_breached or self.daily_loss_pct() <= -cfg.daily_loss_limit_pct:
            failure = ("daily_loss_limit", f"Daily loss limit breached ({self.daily_loss_pct():.2f}%)")
        elif self._positions.open_count >= cfg.max_positions:
            failure = ("max_positions", f"Max positions: {cfg.max_positions}")
        elif self._consecutive_losses >= cfg.consecutive_loss_limit:
            failure = ("consecutive_losses", f"Consecutive losses: {self._consecutive_losses}")

        if failure is not None:
            check, message = failure
            logger.warning("Pre-entry risk check failed: %s", message)
            await self._publish(EventKind.RISK_CHECK_FAILED, {"check": check, "reason": message})
            raise RiskCheckFailed(message, check=check)
        await self._publish(EventKind.RISK_CHECK_PASSED, {"open_positions": self._positions.open_count})

    def position_size(self, days_to_expiry: int, lot_size: int, freeze_limit: int | None = None) -> int:
        vix = self._current_vix if self._current_vix is not None else self._config.vix_threshold
        return self._sizer.size(self._start_capital, vix, days_to_expiry, lot_size, freeze_limit)

    def reset_daily(self) -> None:
        """Clear the daily-loss latch and loss streak; the VIX breaker follows VIX."""
        self._daily_loss_breached = False
        self._consecutive_losses = 0
        logger.info("Risk manager daily state reset")

    def status(self) -> dict:
        return {
            "current_vix": self._current_vix,
            "circuit_breaker_active": self._breaker_active,
            "daily_pnl": self._positions.daily_pnl,
            "daily_loss_pct": self.daily_loss_pct(),
            "daily_loss_limit_pct": self._config.daily_loss_limit_pct,
            "daily_loss_breached": self._daily_loss_breached,
            "consecutive_losses": self._consecutive_losses,
            "consecutive_loss_limit": self._config.consecutive_loss_limit,
            "open_positions": self._positions.open_count,
            "max_positions": self._config.max_positions,
            "start_capital": self._start_capital,
        }

    async def _request_exit(self, position_id: str, reason: ExitReason, detail: str) -> None:
        await self._publish(EventKind.EXIT_SIGNAL_GENERATED, {
            "position_id": position_id,
            "primary_reason": reason.value,
            "secondary_reasons": [detail],
            "priority": int(ExitPriority.MANDATORY),
        })

    async def _publish(self, kind: EventKind, payload: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(
                Event.create(kind, payload, source="RiskManager", timestamp=self._clock())
            )
